"""Classificateur de domaines partage par les deux moteurs.

Fonction pure: domaine (+ chaine observee optionnelle) -> ALLOW / BLOCK,
selon whitelist, blacklist, mots-cles utilisateur, mots-cles par defaut
et heuristique jeux d'argent.

Ordre d'evaluation:
    whitelist -> blacklist -> mots-cles utilisateur -> mots-cles par
    defaut -> heuristique "bet" -> ALLOW

Lessons Learned Epic 1:
- Use Python 3.10+ type hints (X | None, not Optional[X])
- Pas de logging sur le chemin chaud (appele pour chaque requete DNS)
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from app.models.policy import Verdict

# Toujours bloques, independamment des listes utilisateur
DEFAULT_KEYWORDS: frozenset[str] = frozenset({
    "porn",
    "xxx",
    "casino",
    "apostas",
    "onlyfans",
    "pornhub",
    "xvideos",
    "xnxx",
    "xhamster",
    "redtube",
    "erotic",
    "nude",
    "nudes",
    "bet365",
    "betano",
})

GAMBLING_TOKEN = "bet"
GAMBLING_TLD = ".bet"
GAMBLING_BR_ZONE = "bet.br"
GAMBLING_FALSE_POSITIVES = ("alphabet",)

# Raisons retournees par explain()
REASON_EMPTY = "empty"
REASON_WHITELIST = "whitelist"
REASON_BLACKLIST = "blacklist"
REASON_USER_KEYWORD = "user_keyword"
REASON_DEFAULT_KEYWORD = "default_keyword"
REASON_GAMBLING = "gambling_heuristic"
REASON_DEFAULT = "default"


class DomainPolicy(Protocol):
    """Vue minimale de la politique lue par le classificateur."""

    whitelist_domains: frozenset[str]
    blocked_domains: frozenset[str]
    blocked_keywords: frozenset[str]


@dataclass(frozen=True)
class Classification:
    """Verdict accompagne de la regle qui l'a produit."""

    verdict: Verdict
    reason: str
    matched: str | None = None

    @property
    def blocked(self) -> bool:
        return self.verdict is Verdict.BLOCK


def normalize_domain(domain: str | None) -> str:
    """Minuscules, trim, suppression du point final."""
    if not domain:
        return ""
    return domain.strip().lower().rstrip(".")


def matches_domain(domain: str, entry: str) -> bool:
    """Egalite exacte ou sous-domaine sur une frontiere de point."""
    return domain == entry or domain.endswith("." + entry)


def matches_blacklist_entry(domain: str, entry: str) -> bool:
    """Comme matches_domain, plus l'inverse: l'entree x.b couvre b."""
    return matches_domain(domain, entry) or entry.endswith("." + domain)


def find_keyword(text: str, keywords: Iterable[str]) -> str | None:
    """Retourne le premier mot-cle contenu dans text, sinon None."""
    for keyword in keywords:
        if keyword and keyword in text:
            return keyword
    return None


def is_gambling_domain(domain: str) -> bool:
    """Heuristique jeux d'argent sur le nom de domaine normalise.

    Zone bet.br, TLD .bet, label "bet." en tete ou au milieu, ou toute
    sous-chaine "bet" hors faux positifs connus (alphabet).
    """
    if domain == GAMBLING_BR_ZONE or domain.endswith("." + GAMBLING_BR_ZONE):
        return True
    if domain.endswith(GAMBLING_TLD):
        return True
    if domain.startswith(GAMBLING_TOKEN + ".") or f".{GAMBLING_TOKEN}." in domain:
        return True
    return contains_gambling_token(domain)


def contains_gambling_token(text: str) -> bool:
    """Sous-chaine "bet" hors faux positifs connus (alphabet)."""
    if GAMBLING_TOKEN not in text:
        return False
    return not any(fp in text for fp in GAMBLING_FALSE_POSITIVES)


def explain(
    domain: str | None,
    policy: DomainPolicy,
    observed: str | None = None,
) -> Classification:
    """Classifie un domaine et indique la regle appliquee.

    Args:
        domain: Domaine interroge ou extrait d'une URL
        policy: Snapshot portant whitelist/blacklist/mots-cles
        observed: Chaine complete observee (URL); par defaut le domaine

    Returns:
        Classification (verdict, raison, element correspondant)
    """
    normalized = normalize_domain(domain)
    if not normalized:
        return Classification(Verdict.ALLOW, REASON_EMPTY)

    for entry in policy.whitelist_domains:
        if entry and matches_domain(normalized, entry):
            return Classification(Verdict.ALLOW, REASON_WHITELIST, entry)

    for entry in policy.blocked_domains:
        if entry and matches_blacklist_entry(normalized, entry):
            return Classification(Verdict.BLOCK, REASON_BLACKLIST, entry)

    text = observed.lower() if observed else normalized

    keyword = find_keyword(text, policy.blocked_keywords)
    if keyword:
        return Classification(Verdict.BLOCK, REASON_USER_KEYWORD, keyword)

    keyword = find_keyword(text, DEFAULT_KEYWORDS)
    if keyword:
        return Classification(Verdict.BLOCK, REASON_DEFAULT_KEYWORD, keyword)

    if is_gambling_domain(normalized) or (observed and contains_gambling_token(text)):
        return Classification(Verdict.BLOCK, REASON_GAMBLING, GAMBLING_TOKEN)

    return Classification(Verdict.ALLOW, REASON_DEFAULT)


def classify(
    domain: str | None,
    policy: DomainPolicy,
    observed: str | None = None,
) -> Verdict:
    """Verdict seul (voir explain)."""
    return explain(domain, policy, observed).verdict
