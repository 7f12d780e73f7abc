from __future__ import annotations

from typing import Any, Dict

import pytest

from zim_lexicon.config import IngestConfig
from zim_lexicon.ingestion import InMemoryArchive

DOG_HTML = """<html><body>
<h2><span class="mw-headline" id="English">English</span><span class="mw-editsection">[<a href="#">edit</a>]</span></h2>
<h3><span class="mw-headline">Etymology</span></h3>
<p>From Middle English <i>dogge</i>.<sup class="reference">[1]</sup></p>
<h3><span class="mw-headline">Noun</span></h3>
<ol>
<li>A domesticated carnivorous mammal kept as a pet.</li>
<li>An unpleasant or contemptible person, usually a man.</li>
</ol>
<h4><span class="mw-headline">Synonyms</span></h4>
<ul><li>hound, pooch; canine</li></ul>
<h2><span class="mw-headline" id="French">French</span></h2>
<h3>Noun</h3>
<ol><li>Un animal domestique de la famille des canidés.</li></ol>
</body></html>
"""

CAT_HTML = """<h2>English</h2>
<h3>Noun</h3>
<ol>
<li>A small domesticated feline animal.</li>
<li>(slang) A fashionable or cool person.</li>
</ol>
<h4>Antonyms</h4>
<ul><li>dog</li></ul>
"""

RUN_HTML = """<h2>English</h2>
<h3>Verb</h3>
<ol><li>To move swiftly on foot so that both feet leave the ground.</li></ol>
<h4>Synonyms</h4>
<ul><li>sprint, dash</li></ul>
"""


def word_html(i: int) -> str:
    return (
        f"<h2>English</h2><h3>Noun</h3><ol>"
        f"<li>The {i}th invented word used by the conversion tests.</li>"
        f"<li>A second sense of word number {i} with more text.</li></ol>"
        f"<h4>Synonyms</h4><ul><li>term{i}, token{i}; Lexeme{i}</li></ul>"
    )


@pytest.fixture
def dog_html() -> str:
    return DOG_HTML


@pytest.fixture
def cat_html() -> str:
    return CAT_HTML


@pytest.fixture
def sample_archive() -> InMemoryArchive:
    """
    Nine entries: three ingestible pages, five that the default selection
    filters out and one undecodable entry.
    """
    archive = InMemoryArchive()
    dog = archive.add_html("Dog", "Dog", DOG_HTML)
    archive.add_html("cat", "cat", CAT_HTML)
    archive.add_redirect("Doggy", "Doggy", dog)
    archive.add_html("Special:Random", "Random", "<p>random</p>")
    archive.add_html("Appendix_Colors", "Appendix:Colors", "<p>colors</p>")
    archive.add_html("logo.png", "logo", b"\x89PNG", mime_type="image/png")
    archive.add_html("Counter", "Counter", "a=1", namespace="M", mime_type="text/plain")
    archive.add_broken()
    archive.add_html("run", "run", RUN_HTML)
    return archive


@pytest.fixture
def word_archive():
    def _build(count: int) -> InMemoryArchive:
        archive = InMemoryArchive()
        for i in range(count):
            archive.add_html(f"word{i}", f"word{i}", word_html(i))
        return archive

    return _build


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+pysqlite:///{tmp_path / 'lexicon.sqlite'}"


@pytest.fixture
def make_config(tmp_path, db_url):
    """
    Build an IngestConfig rooted in tmp_path. Keyword arguments are per-section
    overrides, e.g. make_config(store={"batch_size": 2}).
    """

    def _make(**sections: Dict[str, Any]) -> IngestConfig:
        raw: Dict[str, Dict[str, Any]] = {
            "input": {
                "archive_path": str(tmp_path / "input.zim"),
                "database_url": db_url,
                "index_dir": str(tmp_path / "whoosh"),
            },
            "workers": {"enabled": False},
            "logging": {"progress_interval": 1},
        }
        for name, values in sections.items():
            raw.setdefault(name, {}).update(values)
        return IngestConfig.from_dict(raw)

    return _make
