"""
Translation between human-friendly (Swedish/English) names and SCB codes.

SCB tables code the same concept differently from table to table ("Region",
"Kommun", "Lan", ...), and labels depend on the request language. The functions
here resolve names a caller is likely to use against a table's JSON-stat2
metadata, and check a whole selection before it is sent upstream.

Lookup order for both variables and values:
    1. exact code
    2. code, case-insensitive
    3. label, case-insensitive
    4. bilingual synonym table
    5. the input, unchanged
"""

import difflib
import re
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .schemas import SelectionValidation

WILDCARD = "*"

# Selection expressions understood by PxWebApi v2 that must reach it untouched
_EXPRESSION_RE = re.compile(r"^(top|bottom|from|to|range)\(.*\)$", re.IGNORECASE)

_FOLD = str.maketrans({"å": "a", "ä": "a", "ö": "o", "é": "e", "ü": "u"})

# Logical variable name -> aliases in Swedish and English (normalised form)
VARIABLE_SYNONYMS: Mapping[str, Tuple[str, ...]] = MappingProxyType(
    {
        "region": (
            "region",
            "kommun",
            "kommuner",
            "municipality",
            "municipalities",
            "lan",
            "county",
            "counties",
            "omrade",
            "area",
            "geography",
        ),
        "period": (
            "tid",
            "time",
            "period",
            "year",
            "years",
            "ar",
            "month",
            "manad",
            "quarter",
            "kvartal",
            "date",
        ),
        "sex": ("kon", "sex", "gender"),
        "age": ("alder", "age", "aldersgrupp", "age group"),
        "measure": (
            "contentscode",
            "tabellinnehall",
            "tabellinnehallet",
            "contents",
            "content",
            "measure",
            "observations",
            "variable",
        ),
        "marital_status": ("civilstand", "marital status", "civil status"),
        "education_level": ("utbildningsniva", "education", "education level", "educational attainment"),
        "birth_region": ("fodelseregion", "region of birth", "birth region", "country of birth"),
        "industry": ("sni2007", "naringsgren", "industry", "branch"),
    }
)

# Common category values: (aliases, candidate codes) in normalised form
VALUE_SYNONYMS: Tuple[Tuple[Tuple[str, ...], Tuple[str, ...]], ...] = (
    (("man", "men", "male", "males"), ("1",)),
    (("kvinnor", "kvinna", "women", "woman", "female", "females"), ("2",)),
    (("totalt", "total", "both sexes", "samtliga", "all", "totalt bada konen"), ("1+2", "tot", "totalt", "total")),
    (("riket", "sweden", "sverige", "whole country", "national", "the whole country"), ("00",)),
)


def normalize_name(value: Any) -> str:
    """Case-fold, trim and fold Swedish diacritics."""
    text = str(value).strip().lower().translate(_FOLD)
    return re.sub(r"\s+", " ", text)


def is_passthrough_value(value: str) -> bool:
    """Wildcards and selection expressions are sent upstream as written."""
    value = value.strip()
    return value == WILDCARD or WILDCARD in value or bool(_EXPRESSION_RE.match(value))


def _dimensions(metadata: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    return metadata.get("dimension") or {}


def ordered_dimension_codes(metadata: Dict[str, Any]) -> List[str]:
    """Dimension codes in axis order (the `id` list when present)."""
    dimensions = _dimensions(metadata)
    ordered = [code for code in metadata.get("id") or [] if code in dimensions]
    ordered.extend(code for code in dimensions if code not in ordered)
    return ordered


def category_codes(dimension: Dict[str, Any]) -> List[str]:
    """Category codes of a dimension in ordinal order."""
    category = dimension.get("category") or {}
    index = category.get("index")
    if isinstance(index, list):
        return list(index)
    if isinstance(index, dict):
        return sorted(index, key=lambda code: index[code])
    return list((category.get("label") or {}).keys())


def category_labels(dimension: Dict[str, Any]) -> Dict[str, str]:
    labels = (dimension.get("category") or {}).get("label") or {}
    return {code: labels.get(code, code) for code in category_codes(dimension)}


def _synonym_group(name: str) -> Optional[str]:
    normalized = normalize_name(name)
    for logical_name, aliases in VARIABLE_SYNONYMS.items():
        if normalized == logical_name or normalized in aliases:
            return logical_name
    return None


def translate_variable_name(name: str, metadata: Dict[str, Any]) -> str:
    """Resolve a variable name or alias to the table's dimension code.

    Returns the input unchanged when nothing matches; validation reports it.
    """
    dimensions = _dimensions(metadata)
    if name in dimensions:
        return name

    wanted = normalize_name(name)
    codes = ordered_dimension_codes(metadata)

    for code in codes:
        if normalize_name(code) == wanted:
            return code

    for code in codes:
        label = dimensions[code].get("label")
        if label and normalize_name(label) == wanted:
            return code

    group = _synonym_group(name)
    if group is not None:
        aliases = set(VARIABLE_SYNONYMS[group]) | {group}
        for code in codes:
            if _code_group(code) == group:
                return code
        for code in codes:
            label = dimensions[code].get("label")
            if label and normalize_name(label) in aliases:
                return code

    return name


def translate_value(dimension_code: str, value: str, metadata: Dict[str, Any]) -> str:
    """Resolve a category label or alias to the category code of one dimension."""
    dimension = _dimensions(metadata).get(dimension_code)
    if dimension is None or is_passthrough_value(value):
        return value

    labels = category_labels(dimension)
    if value in labels:
        return value

    wanted = normalize_name(value)
    for code in labels:
        if normalize_name(code) == wanted:
            return code

    for code, label in labels.items():
        if normalize_name(label) == wanted:
            return code

    for aliases, candidate_codes in VALUE_SYNONYMS:
        if wanted not in aliases:
            continue
        for code in labels:
            if normalize_name(code) in candidate_codes:
                return code
        for code, label in labels.items():
            if normalize_name(label) in aliases:
                return code

    return value


def _strip_code_suffix(code: str) -> str:
    return re.sub(r"[_\-]?\d+$", "", code) or code


def _code_group(code: str) -> Optional[str]:
    """Synonym group of a dimension code, trying the full code before the stripped one."""
    return _synonym_group(code) or _synonym_group(_strip_code_suffix(code))


def dimension_base_name(code: str) -> str:
    """Stable logical name for a dimension code, e.g. 'Tid' -> 'period'."""
    stripped = _strip_code_suffix(code)
    group = _code_group(code)
    if group is not None:
        return group
    return re.sub(r"\W+", "_", normalize_name(stripped)).strip("_") or code


def closest_matches(wanted: str, candidates: Dict[str, str], limit: int = 3) -> List[str]:
    """Codes whose code or label is closest to `wanted`.

    difflib ratio (cutoff 0.6) first, then substring/prefix matches, each in
    candidate order, so the result is deterministic.
    """
    normalized = normalize_name(wanted)
    if not normalized:
        return []

    keyed: Dict[str, str] = {}
    for code, label in candidates.items():
        keyed.setdefault(normalize_name(code), code)
        keyed.setdefault(normalize_name(label), code)
    keyed.pop("", None)

    matches: List[str] = []
    for key in difflib.get_close_matches(normalized, list(keyed), n=limit * 2, cutoff=0.6):
        if keyed[key] not in matches:
            matches.append(keyed[key])

    for key, code in keyed.items():
        if not key or code in matches:
            continue
        if normalized in key or key in normalized or key[:4] == normalized[:4]:
            matches.append(code)

    return matches[:limit]


def _as_value_list(values: Union[str, Iterable[str], None]) -> List[str]:
    if values is None:
        return []
    if isinstance(values, str):
        return [values]
    return [str(value) for value in values]


def check_selection(
    metadata: Dict[str, Any], selection: Optional[Mapping[str, Any]], sample_size: int = 5
) -> SelectionValidation:
    """Validate and translate a selection against a table's metadata."""
    errors: List[str] = []
    suggestions: List[str] = []
    translated: Dict[str, List[str]] = {}

    dimensions = _dimensions(metadata)
    dimension_labels = {code: dimensions[code].get("label") or code for code in ordered_dimension_codes(metadata)}

    for requested_name, requested_values in (selection or {}).items():
        code = translate_variable_name(requested_name, metadata)
        if code not in dimensions:
            errors.append(f"Unknown variable '{requested_name}'")
            closest = closest_matches(requested_name, dimension_labels)
            if closest:
                suggestions.extend(
                    f"Did you mean variable '{match}' ({dimension_labels[match]}) instead of '{requested_name}'?"
                    for match in closest
                )
            else:
                suggestions.append(f"Available variables: {', '.join(dimension_labels)}")
            continue

        labels = category_labels(dimensions[code])
        resolved: List[str] = []
        for value in _as_value_list(requested_values):
            if is_passthrough_value(value):
                resolved.append(value.strip())
                continue

            value_code = translate_value(code, value, metadata)
            if value_code in labels:
                if value_code not in resolved:
                    resolved.append(value_code)
                continue

            errors.append(f"Invalid value '{value}' for variable '{code}'")
            for match in closest_matches(value, labels):
                suggestions.append(f"Did you mean '{match}' ({labels[match]}) for variable '{code}'?")
            samples = [f"{sample} ({labels[sample]})" for sample in list(labels)[:sample_size]]
            suggestions.append(f"Valid values for '{code}' include: {', '.join(samples)}")

        if not resolved:
            if not _as_value_list(requested_values):
                errors.append(f"No values selected for variable '{code}'")
                suggestions.append(f"Use '{WILDCARD}' to select all values of '{code}'")
            continue

        if code in translated:
            translated[code].extend(value for value in resolved if value not in translated[code])
        else:
            translated[code] = resolved

    is_valid = not errors
    return SelectionValidation(
        is_valid=is_valid,
        errors=errors,
        suggestions=suggestions,
        translated_selection=translated if is_valid else None,
    )
