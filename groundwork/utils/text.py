"""Tokenization shared by JD parsing, grounding and fit scoring."""
import re
from typing import List, Set

TOKEN_RE = re.compile(r"[a-z0-9][a-z0-9+#]*")

STOPWORDS = frozenset("""
a about above after again against all also am an and any are as at be because been
before being below between both but by can could did do does doing down during each
etc few for from further had has have having he her here hers him his how i if in into
is it its itself just me more most my no nor not now of off on once only or other our
ours out over own same she should so some such than that the their theirs them then
there these they this those through to too under until up upon us very via was we were
what when where which while who whom why will with within without would you your yours
""".split())


def tokenize(text: str) -> List[str]:
    """Lowercased word tokens in order; keeps c++, c#, p99, 40 (from 40%)."""
    return TOKEN_RE.findall((text or "").lower())


def is_numeric(token: str) -> bool:
    return any(ch.isdigit() for ch in token)


def stem(token: str) -> str:
    """Light suffix stripping so 'reduced', 'reduces' and 'reduce' compare equal."""
    if is_numeric(token) or len(token) <= 3:
        return token
    if token.endswith("ies") and len(token) > 4:
        token = token[:-3] + "y"
    elif token.endswith("ing") and len(token) > 5:
        token = token[:-3]
    elif token.endswith("ed") and len(token) > 4:
        token = token[:-2]
    elif token.endswith("es") and len(token) > 4:
        token = token[:-2]
    elif token.endswith("s") and not token.endswith("ss"):
        token = token[:-1]
    if token.endswith("e") and len(token) > 4:
        token = token[:-1]
    return token


def content_terms(text: str, ignore: Set[str] = frozenset()) -> Set[str]:
    """Stemmed, stopword-free token set. `ignore` holds already-stemmed terms to drop."""
    terms = set()
    for token in tokenize(text):
        if token in STOPWORDS:
            continue
        term = stem(token)
        if term and term not in ignore:
            terms.add(term)
    return terms
