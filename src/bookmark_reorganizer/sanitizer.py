import json
import re

_FENCED_BLOCK_RE = re.compile(r"```[ \t]*(?:json)?[ \t]*\r?\n?(.*?)```", re.IGNORECASE | re.DOTALL)
_LEADING_FENCE_RE = re.compile(r"^```[ \t]*(?:json)?[ \t]*\r?\n?", re.IGNORECASE)
_TRAILING_FENCE_RE = re.compile(r"\r?\n?[ \t]*```\s*$")


def parse_model_response(result_text):
    """Parse the structured value out of a generative model reply.

    Returns the parsed dict (or list, when the whole reply is a bare JSON
    array) or None when no candidate parses.
    """
    if not result_text or not isinstance(result_text, str):
        return None

    # Stage 1: strip markdown code fences, preferring the first complete block.
    cleaned = _strip_fences(result_text.strip())

    # Stage 2: direct parse after trailing-comma cleanup.
    result = _parse_stage(cleaned, allow_array=True)
    if result is not None:
        return result

    # Stage 3: reply already looks like an object.
    cleaned = _fix_smart_quotes(cleaned)
    if cleaned.startswith("{") and "}" in cleaned:
        result = _parse_stage(cleaned)
        if result is not None:
            return result

    # Stage 4: slice from the first opening brace to the last closing brace.
    first_brace = cleaned.find("{")
    last_brace = cleaned.rfind("}")
    if first_brace != -1 and last_brace > first_brace:
        result = _parse_stage(cleaned[first_brace : last_brace + 1])
        if result is not None:
            return result

    # Stage 5: first balanced top-level region, found by depth counting.
    region = _first_balanced_object(cleaned)
    if region is not None:
        result = _parse_stage(region)
        if result is not None:
            return result

    return None


def extract_json_object(result_text):
    """Return the recovered value re-serialized as compact JSON text, or None."""
    parsed = parse_model_response(result_text)
    if parsed is None:
        return None
    return json.dumps(parsed, ensure_ascii=False)


def strip_trailing_commas(text):
    """Drop commas that directly precede a closing brace or bracket.

    Commas inside string literals are copied through untouched.
    """
    dropped = set()
    pending = None
    for i, ch in _structural_chars(text):
        if ch.isspace():
            continue
        if pending is not None and ch in "}]":
            dropped.add(pending)
        pending = i if ch == "," else None
    if not dropped:
        return text
    return "".join(ch for i, ch in enumerate(text) if i not in dropped)


def _strip_fences(text):
    match = _FENCED_BLOCK_RE.search(text)
    if match:
        return match.group(1).strip()
    # A lone opening or closing fence (truncated reply).
    defenced = _LEADING_FENCE_RE.sub("", text, count=1)
    defenced = _TRAILING_FENCE_RE.sub("", defenced)
    return defenced.strip()


def _try_json_loads(text):
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None


def _parse_stage(text, allow_array=False):
    if not text:
        return None
    # Raw text first; most replies parse as-is.
    result = _try_json_loads(text)
    if result is None:
        result = _try_json_loads(strip_trailing_commas(text))
    if isinstance(result, dict):
        return result
    if allow_array and isinstance(result, list):
        return result
    return None


def _fix_smart_quotes(text):
    """Replace curly double-quotes with straight double-quotes.

    Single curly quotes (apostrophes) are left alone to avoid corrupting values.
    """
    return text.replace("“", '"').replace("”", '"')


def _structural_chars(text, start=0):
    """Yield (index, char) for characters outside string literals.

    An opening quote is yielded; the string body and its closing quote are not.
    """
    in_string = False
    escape_next = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escape_next:
                escape_next = False
            elif ch == "\\":
                escape_next = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        yield i, ch


def _first_balanced_object(text):
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    for i, ch in _structural_chars(text, start):
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None
