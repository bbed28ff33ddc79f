"""Test case store: local quest directories and downloadable quest archives.

A quest directory holds ``<name>.in`` files, each paired with ``<name>.ans``
(or ``<name>.out``) and optionally a ``<name>.md`` hint. Names are sorted
naturally, so ``2.in`` comes before ``10.in``; ordinals follow that order.
"""

from __future__ import annotations

import io
import logging
import re
import shutil
import tempfile
import zipfile
from pathlib import Path
from typing import Sequence

import httpx

from owlquest.config import Config
from owlquest.errors import StoreError
from owlquest.models import Provenance, TestCase

logger = logging.getLogger(__name__)

ANSWER_EXTENSIONS = (".ans", ".out")


def _natural_key(path: Path) -> list:
    return [int(part) if part.isdigit() else part for part in re.split(r"(\d+)", path.stem)]


def load_local_test_cases(path: str | Path, provenance: Provenance = Provenance.LOCAL) -> list[TestCase]:
    """Load the paired input/answer files under *path* in ordinal order."""
    root = Path(path)
    if not root.is_dir():
        raise StoreError(f"'{root}': no such quest directory")

    inputs = sorted(root.rglob("*.in"), key=lambda p: (_natural_key(p), str(p)))
    if not inputs:
        raise StoreError(f"no matches in '{root}' matching '*.in'")

    cases = []
    for ordinal, in_file in enumerate(inputs, 1):
        ans_file = next(
            (in_file.with_suffix(ext) for ext in ANSWER_EXTENSIONS if in_file.with_suffix(ext).is_file()),
            None,
        )
        if ans_file is None:
            raise StoreError(f"'{in_file}': no matching answer file (.ans or .out)")
        hint_file = in_file.with_suffix(".md")
        try:
            cases.append(
                TestCase(
                    name=in_file.stem,
                    ordinal=ordinal,
                    input=in_file.read_bytes(),
                    expected=ans_file.read_bytes(),
                    provenance=provenance,
                    hint=hint_file.read_text(encoding="utf-8") if hint_file.is_file() else None,
                )
            )
        except OSError as e:
            raise StoreError(f"could not read test case '{in_file.stem}' ({e})") from e

    logger.debug("loaded %d test case(s) from '%s'", len(cases), root)
    return cases


def quest_dir(problem_id: str, config: Config) -> Path:
    if not problem_id or "/" in problem_id or problem_id in (".", ".."):
        raise StoreError(f"'{problem_id}': invalid quest name")
    return config.home / problem_id


def fetch_test_cases(problem_id: str, config: Config, refresh: bool = False) -> list[TestCase]:
    """Return a quest's test cases, downloading its archive unless already cached."""
    target = quest_dir(problem_id, config)
    if refresh or not target.exists():
        download_quest(problem_id, config, target)
    return load_local_test_cases(target, provenance=Provenance.FETCHED)


def download_quest(problem_id: str, config: Config, target: Path) -> None:
    """Download and extract a quest archive, replacing *target* only on success."""
    url = config.quest_url.format(problem_id=problem_id)
    logger.info("downloading quest '%s' from '%s'", problem_id, url)
    try:
        resp = httpx.get(url, follow_redirects=True, timeout=config.fetch_timeout)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        raise StoreError(f"could not request '{url}' ({e})") from e

    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f".{problem_id}-", dir=target.parent))
    except OSError as e:
        raise StoreError(f"could not prepare '{target.parent}' ({e})") from e
    try:
        with zipfile.ZipFile(io.BytesIO(resp.content)) as archive:
            archive.extractall(staging)
        if target.exists():
            shutil.rmtree(target)
        staging.rename(target)
    except (zipfile.BadZipFile, OSError) as e:
        raise StoreError(f"could not extract quest archive from '{url}' ({e})") from e
    finally:
        shutil.rmtree(staging, ignore_errors=True)


def select_cases(
    cases: Sequence[TestCase],
    case: int | None = None,
    name: str | None = None,
) -> list[TestCase]:
    """Narrow *cases* to one test chosen by 1-based case number or by name."""
    if case is not None:
        if not 1 <= case <= len(cases):
            raise StoreError(f"test case {case} out of range (1-{len(cases)})")
        return [cases[case - 1]]
    if name is not None:
        matches = [tc for tc in cases if tc.name == name]
        if not matches:
            raise StoreError(f"'{name}': no such test case")
        return matches
    return list(cases)
