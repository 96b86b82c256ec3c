"""Shared test fixtures for the codexsync test suite."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import aiosqlite
import pytest

from codexsync.cache import CacheStore
from codexsync.models.cache import CacheEntry
from codexsync.store import Store

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from pathlib import Path

CORE_RULES_HTML = """
<h2>Command Phase</h2>
<p>Both players gain 1CP at the start of the Command phase.</p>
<h3>Battle-shock</h3>
<p>Units below half-strength must take a Battle-shock test.</p>
<ul><li>Roll 2D6</li><li>Compare to Leadership</li></ul>
<h2>Shooting Phase</h2>
<p>Short</p>
<h3>Big Guns Never Tire</h3>
<p>Vehicles can shoot while within Engagement Range.</p>
"""

NECRONS_HTML = """
<div><a name="Introduction"></a></div>
<p>The Necrons are an ancient race of skeletal androids who have slumbered for sixty
million years in their tomb worlds, and who now awaken to reclaim the galaxy.</p>
<a name="Army-Rules"></a>
<h2>Army Rules</h2>
<div class="Columns2">
  <h3 class="dsColorBgNE">Reanimation Protocols</h3>
  <p>At the end of your Command phase, each unit with this ability reanimates.</p>
</div>
<a name="Stratagems-2"></a>
<div class="str10Wrap">
  <div class="str10Name">Dimensional Corridor</div>
  <div class="str10Border">
    <div class="str10CP">1CP</div>
    <div class="str10Type">Core - Strategic Ploy Stratagem</div>
    <div class="str10Text"><b>WHEN:</b> Your Movement phase.<br>
      <b>EFFECT:</b> Remove the unit and set it up again.</div>
  </div>
</div>
<a name="Awakened-Dynasty"></a>
<h2 class="outline_header">Awakened Dynasty</h2>
<p class="ShowFluff">The dynasty rises from its tombs.</p>
<a name="Detachment-Rule"></a>
<h3 class="dsColorBgNE">Command Protocols</h3>
<p>Each Command phase, select one protocol to be active until your next turn.</p>
<a name="Enhancements"></a>
<div>
  <ul class="EnhancementsPts"><li><span>Enaegic Dermal Bond</span><span>15 pts</span></li></ul>
  <p>NECRONS model only. The bearer has a 4+ invulnerable save.</p>
</div>
<a name="Stratagems"></a>
<div class="str10Wrap">
  <div class="str10Name">Protocol of the Hungry Void</div>
  <div class="str10Border">
    <div class="str10CP">2CP</div>
    <div class="str10Type">Awakened Dynasty - Battle Tactic Stratagem</div>
    <div class="str10Text"><b>WHEN:</b> Fight phase.<br>
      <b>TARGET:</b> One NECRONS unit.<br>
      <b>EFFECT:</b> Add 1 to the Strength characteristic of melee weapons.</div>
  </div>
</div>
<div class="str10Wrap">
  <div class="str10Name">Empty Card</div>
  <div class="str10Border"><div class="str10Text"><b>WHEN:</b> Any phase.</div></div>
</div>
"""

NECRONS_MARKDOWN = "# Necrons\n\n[Canoptek Wraiths](/wh40k10ed/factions/necrons/Canoptek-Wraiths)\n"

WRAITHS_MARKDOWN = """# Necrons – Canoptek Wraiths

| M | T | SV | W | LD | OC |
|---|---|---|---|---|---|
| 10" | 6 | 4+ | 3 | 7+ | 2 |

4+ invulnerable save

RANGED WEAPONS
| | Particle caster | 12" | 1 | 4+ | 6 | 0 | 1 |
MELEE WEAPONS
| | Vicious claws | Melee | 4 | 4+ | 6 | -1 | 1 |

ABILITIES
CORE: **Deep Strike**
FACTION: **Reanimation Protocols**
**Wraith Form:** This model has a 4+ invulnerable save and can move through walls.

UNIT COMPOSITION
3-6 Canoptek Wraiths

| 3 models | 110 |

KEYWORDS: Beast, Fly, Canoptek, Wraiths
FACTION KEYWORDS: Necrons
"""


def _make_entry(
    url: str, *, html: str = "<p>page</p>", markdown: str = "", links: list[str] | None = None
) -> CacheEntry:
    return CacheEntry(
        url=url,
        html=html,
        markdown=markdown,
        links=list(links or []),
        content_hash="0" * 64,
        fetched_at=datetime(2026, 1, 1, tzinfo=UTC),
    )


@pytest.fixture()
async def store() -> AsyncIterator[Store]:
    """Store over a fresh in-memory database."""
    async with aiosqlite.connect(":memory:") as db:
        s = Store(db)
        await s.init_db()
        yield s


@pytest.fixture()
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "scrape-cache"


@pytest.fixture()
def cache_store(cache_dir: Path) -> CacheStore:
    return CacheStore(cache_dir)


@pytest.fixture()
def make_entry() -> Callable[..., CacheEntry]:
    """Factory for fetched pages: ``make_entry(url, html=..., markdown=..., links=...)``."""
    return _make_entry


@pytest.fixture()
def core_rules_html() -> str:
    return CORE_RULES_HTML


@pytest.fixture()
def faction_html() -> str:
    return NECRONS_HTML


@pytest.fixture()
def faction_markdown() -> str:
    return NECRONS_MARKDOWN


@pytest.fixture()
def unit_markdown() -> str:
    return WRAITHS_MARKDOWN
