"""
Configuration et utilitaires partagés
"""

import os
import logging
from datetime import datetime, timezone
from pathlib import Path

from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv

logger = logging.getLogger("config")

# Charger .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'field_activity')

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')


# ==================== ANALYTICS DEFAULTS ====================

def _env_number(name: str, default=None):
    """Nombre >= 0 lu depuis l'env, sinon default (valeur invalide ignorée)"""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}")
        return default
    if value < 0:
        logger.warning(f"Ignoring negative {name}={raw!r}")
        return default
    return int(value) if value.is_integer() else value


JSV_REPEAT_ALERT_THRESHOLD = _env_number('JSV_REPEAT_ALERT_THRESHOLD', 3)
ADMIN_JSV_WEEKLY_TARGET = _env_number('ADMIN_JSV_WEEKLY_TARGET', 6)

# Stage 4: seuils surchargeables, les clés absentes gardent le défaut
STAGE4_THRESHOLD_OVERRIDES = {
    key: value
    for key, value in {
        "min_visits_for_low_enquiry": _env_number('STAGE4_MIN_VISITS_FOR_LOW_ENQUIRY'),
        "min_enquiry_per_visit": _env_number('STAGE4_MIN_ENQUIRY_PER_VISIT'),
        "min_enquiries_for_low_conversion": _env_number('STAGE4_MIN_ENQUIRIES_FOR_LOW_CONVERSION'),
        "min_shipment_conversion": _env_number('STAGE4_MIN_SHIPMENT_CONVERSION'),
    }.items()
    if value is not None
}


# ==================== HELPERS ====================

def now_iso() -> str:
    """Retourne la date/heure actuelle en ISO"""
    return datetime.now(timezone.utc).isoformat()
