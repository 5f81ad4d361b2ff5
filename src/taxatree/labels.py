from __future__ import annotations

"""
Label codec for the Taxatree project.

Outline labels carry two kinds of inline annotation:

- a rank token `{rank:<rank>}` appended after the name (older outlines use a
  trailing single letter such as " F" or " G" instead)
- a participant wrapper `{color:<token>}...{/color}` around the name, used by
  the compare and checklist views

`decorate` turns these tokens into the badge and span markup the renderer
consumes. `to_plain_text` goes the other way and strips every kind of
decoration so the text can be shown bare or handed to the exporters.

Inside the package, rank and participant travel as TaxonNode attributes.
Text embedding happens only at the boundaries through `annotate` and
`decorate_label`.
"""

import html
import logging
import re
from dataclasses import dataclass
from typing import Dict, Optional

from .ranks import LETTER_TO_BAND, band_of, glyph_for_rank, normalize_rank

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Participant metadata
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Participant:
    """Visual metadata for one participant kind."""

    kind: str
    color: str
    node_class: str
    edge_class: str
    description: str


PARTICIPANTS: Dict[str, Participant] = {
    "user1": Participant("user1", "#dc2626", "user1-node", "user1-edge", "first-set-only"),
    "user2": Participant("user2", "#2563eb", "user2-node", "user2-edge", "second-set-only"),
    "shared": Participant("shared", "#9333ea", "shared-node", "shared-edge", "shared"),
    "seen": Participant("seen", "#22c55e", "seen-node", "seen-edge", "observed"),
    "unseen": Participant(
        "unseen", "#9ca3af", "unseen-node", "unseen-edge missing-edge", "not-observed"
    ),
}

# Color tokens found in {color:...} wrappers
COLOR_TOKEN_TO_PARTICIPANT: Dict[str, str] = {
    "red": "user1",
    "#dc2626": "user1",
    "blue": "user2",
    "#2563eb": "user2",
    "purple": "shared",
    "#9333ea": "shared",
    "green": "seen",
    "#22c55e": "seen",
    "gray": "unseen",
    "grey": "unseen",
    "#9ca3af": "unseen",
}

_NODE_CLASS_TO_PARTICIPANT: Dict[str, str] = {
    p.node_class: kind for kind, p in PARTICIPANTS.items()
}


def participant_for_token(token: Optional[str]) -> Optional[str]:
    """Map a color token or participant kind to a participant kind."""
    if not token:
        return None
    key = token.strip().lower()
    if key in PARTICIPANTS:
        return key
    return COLOR_TOKEN_TO_PARTICIPANT.get(key)


def participant_color(kind: Optional[str]) -> Optional[str]:
    meta = PARTICIPANTS.get(kind or "")
    return meta.color if meta else None


# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

RANK_TOKEN_RE = re.compile(r"[ \t]*\{rank:([^}]*)\}")
LEGACY_LETTER_RE = re.compile(r"(\s)([FGSOCPKD])\s*$")
COLOR_PAIR_RE = re.compile(r"\{color:([^}]+)\}(.*?)\{/color\}", re.IGNORECASE)
COLOR_TOKEN_RE = re.compile(r"\{/?color:?[^}]*\}", re.IGNORECASE)

BADGE_RE = re.compile(r"<span\b[^>]*\bmm-badge\b[^>]*>.*?</span>", re.IGNORECASE | re.DOTALL)
DATA_RANK_RE = re.compile(r'data-rank="([^"]*)"')
NODE_CLASS_RE = re.compile(r'class="([a-z0-9]+-node)"')
LINK_RE = re.compile(r"<a\b[^>]*>(.*?)</a>", re.IGNORECASE | re.DOTALL)
TAG_RE = re.compile(r"<[^>]+>")
PHOTO_CHIP_RE = re.compile("\U0001F5BC\uFE0F?")

EMOJI_RE = re.compile(
    "[\U0001F300-\U0001FAFF\U00002600-\U000027BF\U0001F000-\U0001F2FF\uFE0F\u200D]"
)
TRAILING_GLYPH_RE = re.compile(
    r"\s(?:[FGSOCPKD]|s[FGCODKP]|e[FG]|i[O])\s*$", re.IGNORECASE
)
WHITESPACE_RE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def badge(rank: str, glyph: Optional[str] = None) -> str:
    """Return the badge markup for a fine rank; empty when there is no rank."""
    r = normalize_rank(rank)
    if not r and not glyph:
        return ""
    band = band_of(r)
    g = glyph or glyph_for_rank(r)
    return (
        f'<span class="mm-badge mm-rank" title="{html.escape(r)}" '
        f'data-rank="{html.escape(r)}" data-band="{html.escape(band)}">{g}</span>'
    )


def _participant_span(match: re.Match) -> str:
    kind = participant_for_token(match.group(1))
    inner = match.group(2)
    if kind is None:
        logger.debug("Dropping unknown color token %r", match.group(1))
        return inner
    return f'<span class="{PARTICIPANTS[kind].node_class}">{inner}</span>'


def _badge_for_token(match: re.Match) -> str:
    markup = badge(match.group(1))
    return " " + markup if markup else ""


def _decorate_line(line: str) -> str:
    if RANK_TOKEN_RE.search(line):
        line = RANK_TOKEN_RE.sub(_badge_for_token, line)
    else:
        legacy = LEGACY_LETTER_RE.search(line)
        if legacy:
            letter = legacy.group(2)
            band = LETTER_TO_BAND[letter]
            line = (
                line[: legacy.start()]
                + legacy.group(1)
                + badge(band, glyph=letter)
            )

    line = COLOR_PAIR_RE.sub(_participant_span, line)
    # Unpaired leftovers never reach the renderer
    return COLOR_TOKEN_RE.sub("", line)


def decorate(outline: str) -> str:
    """
    Replace annotation tokens in an outline with renderer markup.

    Each `{rank:x}` token becomes a badge span carrying the fine rank and a
    one-letter band glyph. Lines without a token fall back to a trailing
    legacy letter. Color wrappers become participant spans.
    """
    if not outline:
        return ""
    return "\n".join(_decorate_line(line) for line in outline.split("\n"))


def annotate(name: str, rank: Optional[str] = None, participant: Optional[str] = None) -> str:
    """Embed rank and participant into an outline label."""
    label = name
    meta = PARTICIPANTS.get(participant or "")
    if meta:
        label = f"{{color:{meta.color}}}{label}{{/color}}"
    # Rankless labels carry an empty token; bare labels read as legacy letters
    label = f"{label} {{rank:{normalize_rank(rank)}}}"
    return label


def decorate_label(name: str, rank: Optional[str] = None, participant: Optional[str] = None) -> str:
    """Build the renderer label for a node from its typed attributes."""
    return _decorate_line(annotate(name, rank, participant))


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def to_plain_text(decorated: str) -> str:
    """
    Strip every kind of decoration from an outline or decorated outline.

    Badges are removed together with their glyph, hyperlinks collapse to
    their inner text, and participant spans, color wrappers, other tags and
    photo-chip glyphs are removed. Trailing whitespace is trimmed per line.
    """
    if not decorated:
        return ""

    text = LINK_RE.sub(r"\1", decorated)
    text = BADGE_RE.sub("", text)
    text = RANK_TOKEN_RE.sub("", text)
    text = COLOR_TOKEN_RE.sub("", text)
    text = PHOTO_CHIP_RE.sub("", text)
    text = TAG_RE.sub("", text)

    return "\n".join(line.rstrip() for line in text.split("\n"))


def extract_rank(label: str) -> str:
    """
    Return the fine rank annotated on a label.

    Looks for a rank token, then a badge's data-rank attribute, then a
    legacy trailing letter (which yields its band name).
    """
    if not label:
        return ""
    token = RANK_TOKEN_RE.search(label)
    if token:
        return normalize_rank(token.group(1))
    attr = DATA_RANK_RE.search(label)
    if attr:
        return normalize_rank(attr.group(1))
    legacy = LEGACY_LETTER_RE.search(label)
    if legacy:
        return LETTER_TO_BAND[legacy.group(2)]
    return ""


def extract_participant(label: str) -> Optional[str]:
    """Return the participant kind marked on a label, if any."""
    if not label:
        return None
    pair = COLOR_PAIR_RE.search(label)
    if pair:
        return participant_for_token(pair.group(1))
    node_class = NODE_CLASS_RE.search(label)
    if node_class:
        return _NODE_CLASS_TO_PARTICIPANT.get(node_class.group(1))
    return None


def strip_tokens(label: str) -> str:
    """Return the bare name of an annotated or decorated label."""
    text = to_plain_text(label)
    if not RANK_TOKEN_RE.search(label) and not DATA_RANK_RE.search(label):
        text = LEGACY_LETTER_RE.sub("", text)
    return WHITESPACE_RE.sub(" ", text).strip()


def clean_export_label(label: str) -> str:
    """
    Clean a label for the XML and tabular exports.

    Removes decoration, HTML entities and pictographs, then any trailing
    rank-glyph remnant such as " F", " sF" or " iO".
    """
    text = to_plain_text(label or "")
    text = html.unescape(text)
    text = EMOJI_RE.sub("", text)
    text = WHITESPACE_RE.sub(" ", text).strip()
    text = TRAILING_GLYPH_RE.sub("", text)
    return text.strip()
