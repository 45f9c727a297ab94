"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Field Reporting - Primitives analytiques                                    ║
║                                                                              ║
║  Partagées par tous les builders de stage:                                   ║
║  - Accumulator: buckets par clé, créés au premier accès + finalize           ║
║  - VisitMetrics / ConversionMetrics: compteurs par bucket                    ║
║  - safe_divide / round_rate: jamais de NaN, 4 décimales                      ║
║  - annuaire users + garde-fous pour les données historiques                  ║
║                                                                              ║
║  Aucun état global mutable: tout est passé en argument.                      ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import math
import re
from datetime import timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from models.user import UNASSIGNED, UserRole
from services.week import parse_date_key, format_date_key

RATE_PRECISION = 4

_WHITESPACE_RE = re.compile(r"\s+")


# ════════════════════════════════════════════════════════════════════════════
# RATIOS
# ════════════════════════════════════════════════════════════════════════════

def safe_divide(numerator: float, denominator: float) -> float:
    """numerator / denominator, 0 si le dénominateur est 0"""
    if not denominator:
        return 0
    return numerator / denominator


def round_rate(value: float, precision: int = RATE_PRECISION) -> float:
    if value is None or not math.isfinite(value):
        return 0
    return round(value, precision)


def rate(numerator: float, denominator: float) -> float:
    return round_rate(safe_divide(numerator, denominator))


# ════════════════════════════════════════════════════════════════════════════
# ACCUMULATORS
# ════════════════════════════════════════════════════════════════════════════

class Accumulator:
    """
    Group-by: un bucket par clé, créé au premier accès.

    Les clés passées au constructeur sont pré-créées: les dimensions fixes
    (call types, customer types) sortent toujours, dans cet ordre.
    """

    def __init__(self, factory: Callable[[], Any], keys: Iterable[Any] = ()):
        self._factory = factory
        self._buckets: Dict[Any, Any] = {}
        for key in keys:
            self.bucket(key)

    def bucket(self, key: Any) -> Any:
        if key not in self._buckets:
            self._buckets[key] = self._factory()
        return self._buckets[key]

    def get(self, key: Any) -> Optional[Any]:
        return self._buckets.get(key)

    def __contains__(self, key: Any) -> bool:
        return key in self._buckets

    def __len__(self) -> int:
        return len(self._buckets)

    def keys(self) -> List[Any]:
        return list(self._buckets.keys())

    def items(self):
        return list(self._buckets.items())

    def finalize(self, fn: Callable[[Any, Any], Dict[str, Any]]) -> List[Dict[str, Any]]:
        """fn(key, bucket) sur chaque bucket, ordre d'insertion"""
        return [fn(key, bucket) for key, bucket in self._buckets.items()]


class VisitMetrics:
    """Compteur planifié / réalisé"""

    def __init__(self):
        self.planned_visits = 0
        self.actual_visits = 0

    def add(self, visited: bool):
        self.planned_visits += 1
        if visited:
            self.actual_visits += 1

    @property
    def achievement_rate(self) -> float:
        return rate(self.actual_visits, self.planned_visits)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "planned_visits": self.planned_visits,
            "actual_visits": self.actual_visits,
            "variance": self.planned_visits - self.actual_visits,
            "achievement_rate": self.achievement_rate,
        }


class ConversionMetrics:
    """Compteur visites -> enquiries -> shipments"""

    def __init__(self):
        self.planned_visits = 0
        self.actual_visits = 0
        self.enquiries = 0
        self.shipments = 0

    def add(self, visited: bool, enquiries: int = 0, shipments: int = 0):
        self.planned_visits += 1
        if visited:
            self.actual_visits += 1
        self.enquiries += enquiries
        self.shipments += shipments

    @property
    def visit_to_enquiry_ratio(self) -> float:
        return rate(self.enquiries, self.actual_visits)

    @property
    def enquiry_to_shipment_conversion(self) -> float:
        return rate(self.shipments, self.enquiries)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "planned_visits": self.planned_visits,
            "actual_visits": self.actual_visits,
            "enquiries": self.enquiries,
            "shipments": self.shipments,
            "visit_to_enquiry_ratio": self.visit_to_enquiry_ratio,
            "enquiry_to_shipment_conversion": self.enquiry_to_shipment_conversion,
        }


# ════════════════════════════════════════════════════════════════════════════
# DATES
# ════════════════════════════════════════════════════════════════════════════

def normalize_date_key(value: Any) -> str:
    """YYYY-MM-DD trimé et valide au calendrier, sinon "" """
    if not isinstance(value, str):
        return ""
    trimmed = value.strip()
    if parse_date_key(trimmed) is None:
        return ""
    return trimmed


def add_days(date_key: str, days: int) -> str:
    return format_date_key(parse_date_key(date_key) + timedelta(days=days))


def days_between(from_key: str, to_key: str) -> int:
    """Jours entiers de from_key à to_key (négatif si to_key est avant)"""
    return (parse_date_key(to_key) - parse_date_key(from_key)).days


def in_range(date_key: str, from_date: str, to_date: str) -> bool:
    # Les clés YYYY-MM-DD se comparent lexicographiquement
    return bool(date_key) and from_date <= date_key <= to_date


# ════════════════════════════════════════════════════════════════════════════
# ROW GUARDS
# ════════════════════════════════════════════════════════════════════════════

def text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def lower_text(value: Any) -> str:
    return text(value).lower()


def normalize_customer_name(value: Any) -> str:
    """Trim + minuscules + espaces internes réduits à un seul"""
    return _WHITESPACE_RE.sub(" ", lower_text(value))


def has_meaningful_planning_row(row: Any) -> bool:
    """Ligne vide tant qu'aucun champ identifiant n'est rempli"""
    if not isinstance(row, dict):
        return False
    return any(
        text(row.get(field))
        for field in ("customer_name", "contact_type", "location_area", "customer_type", "jsv_with_whom")
    )


def to_non_negative_int(value: Any) -> int:
    """Compteurs lus en base: invalide ou négatif = 0"""
    if isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number) or number < 0:
        return 0
    return int(number)


def build_actual_rows_by_date(actual_rows: Any) -> Dict[str, Dict[str, Any]]:
    """Lignes actual output par date (valide), la dernière gagne"""
    by_date = {}
    for row in actual_rows or []:
        if not isinstance(row, dict):
            continue
        date_key = normalize_date_key(row.get("date"))
        if date_key:
            by_date[date_key] = row
    return by_date


def is_visited(actual_row: Optional[Dict[str, Any]]) -> bool:
    return bool(actual_row) and lower_text(actual_row.get("visited")) == "yes"


# ════════════════════════════════════════════════════════════════════════════
# USER DIRECTORY
# ════════════════════════════════════════════════════════════════════════════

def get_user_id(user: Dict[str, Any]) -> str:
    raw = user.get("id")
    if raw is None:
        raw = user.get("_id")
    return "" if raw is None else str(raw)


def _team_label(value: Any) -> str:
    return text(value) or UNASSIGNED


def normalize_user(user: Dict[str, Any]) -> Dict[str, Any]:
    name = text(user.get("name"))
    email = text(user.get("email"))
    return {
        "id": get_user_id(user),
        "name": name or email,
        "email": email,
        "role": lower_text(user.get("role")) or UserRole.SALESMAN.value,
        "main_team": _team_label(user.get("main_team")),
        "team": _team_label(user.get("team")),
        "sub_team": _team_label(user.get("sub_team")),
    }


def build_user_directory(users: Any) -> Dict[str, Dict[str, Any]]:
    """id -> user normalisé, les records sans id sont ignorés"""
    directory = {}
    for user in users or []:
        if not isinstance(user, dict):
            continue
        normalized = normalize_user(user)
        if normalized["id"]:
            directory[normalized["id"]] = normalized
    return directory


def salesman_summary(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": user["id"],
        "name": user["name"],
        "email": user["email"],
        "main_team": user["main_team"],
        "team": user["team"],
        "sub_team": user["sub_team"],
    }


def build_user_filter_options(directory: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    users = list(directory.values())
    return {
        "salesmen": sorted(
            ({"id": user["id"], "name": user["name"]} for user in users),
            key=lambda option: (option["name"].lower(), option["id"]),
        ),
        "main_team": sorted({user["main_team"] for user in users}),
        "team": sorted({user["team"] for user in users}),
        "sub_team": sorted({user["sub_team"] for user in users}),
    }


def parse_id_list(value: Any) -> List[str]:
    """Accepte "a,b" ou ["a", "b,c"], vides retirés, ordre conservé"""
    if value is None:
        return []
    raw_items = value if isinstance(value, (list, tuple, set)) else [value]
    ids = []
    for item in raw_items:
        for part in str(item).split(","):
            part = part.strip()
            if part and part not in ids:
                ids.append(part)
    return ids


def user_matches_filters(user: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    """Liste d'ids commerciaux + égalité stricte main_team / team / sub_team"""
    salesmen = parse_id_list(filters.get("salesmen"))
    if salesmen and user["id"] not in salesmen:
        return False
    for field in ("main_team", "team", "sub_team"):
        wanted = text(filters.get(field))
        if wanted and user[field] != wanted:
            return False
    return True
