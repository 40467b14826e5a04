"""Named region groups usable as an alert location.

An alert whose location is a region identifier matches jobs in any of the
region's cities. Identifiers that are not in the table match nothing.
"""

REGION_PREFIX = "region_"

REGION_LABELS: dict[str, str] = {
    "region_jerusalem": "אזור ירושלים והסביבה",
    "region_center": "אזור בני ברק והמרכז",
    "region_modiin_elad": "אזור מודיעין, אילת והשפלה",
    "region_north": "אזור הצפון",
    "region_south": "אזור הדרום",
    "region_sharon": "אזור השרון",
}

REGION_CITIES: dict[str, frozenset[str]] = {
    "region_jerusalem": frozenset({
        "ירושלים", "ביתר עילית", "בית שמש", "גבעת זאב", "מבשרת ציון",
        "מעלה אדומים", "צור הדסה", "אפרת", "קריית יערים", "אבו גוש",
    }),
    "region_center": frozenset({
        "בני ברק", "תל אביב-יפו", "רמת גן", "גבעתיים", "פתח תקווה",
        "ראש העין", "אור יהודה", "יהוד-מונוסון", "קריית אונו", "גבעת שמואל",
    }),
    "region_modiin_elad": frozenset({
        "מודיעין עילית", "מודיעין-מכבים-רעות", "אלעד", "לוד", "רמלה",
        "שוהם", "רחובות", "ראשון לציון", "נס ציונה", "באר יעקב",
    }),
    "region_north": frozenset({
        "חיפה", "טבריה", "צפת", "רכסים", "חריש", "עפולה", "נוף הגליל",
        "כרמיאל", "עכו", "נהריה", "קריית אתא", "קריית ביאליק", "קריית ים",
        "קריית מוצקין", "חצור הגלילית", "מגדל העמק",
    }),
    "region_south": frozenset({
        "באר שבע", "אשדוד", "אשקלון", "נתיבות", "אופקים", "שדרות",
        "קריית גת", "קריית מלאכי", "ערד", "דימונה", "ירוחם", "מצפה רמון",
        "אילת",
    }),
    "region_sharon": frozenset({
        "נתניה", "חדרה", "הרצליה", "רעננה", "כפר סבא", "הוד השרון",
        "רמת השרון", "כפר יונה",
    }),
}


def is_region(location: str) -> bool:
    return location.startswith(REGION_PREFIX)


def cities_in_region(region_id: str) -> frozenset[str]:
    """Cities of a region, empty for unknown identifiers."""
    return REGION_CITIES.get(region_id, frozenset())


def location_label(location: str | None) -> str:
    """Human-readable label for a city or region identifier."""
    if not location:
        return "כל הארץ"
    return REGION_LABELS.get(location, location)
