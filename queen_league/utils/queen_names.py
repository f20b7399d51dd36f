import re
import unicodedata

from queen_league.utils.scoring_exceptions import InvalidQueenNameError

_WHITESPACE = re.compile(r'\s+')

def normalize_queen_name(raw_name) -> str:
    """Strip and collapse whitespace in a queen name; empty names are rejected"""
    if raw_name is None:
        raise InvalidQueenNameError(raw_name)
    name = _WHITESPACE.sub(' ', str(raw_name)).strip()
    if not name:
        raise InvalidQueenNameError(raw_name)
    return name

def queen_identity(name: str) -> str:
    """Case-insensitive comparison key for queen names (Unicode-aware)"""
    return unicodedata.normalize('NFKC', normalize_queen_name(name)).casefold()
