def normalize_phone(raw) -> str:
    """
    Canonicalize a raw phone value into a comparable identity key.

    Anything that is not a string (None included) becomes "". Strings are
    only stripped of surrounding whitespace; no E.164 reformatting is done,
    so "+1 555 0100" and "+15550100" are different contacts.
    """
    if not isinstance(raw, str):
        return ""
    return raw.strip()
