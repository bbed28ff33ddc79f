"""Stash: saved programs and per-language templates under ``<home>/.stash``.

A template is stored as ``.template.<ext>``; ``init_program`` copies it to a new
file and hands back the ``Submission`` a quest needs.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from owlquest.config import Config
from owlquest.errors import StoreError
from owlquest.languages import detect
from owlquest.models import Submission

logger = logging.getLogger(__name__)

STASH_DIR = ".stash"
TEMPLATE_STEM = ".template"


def stash_dir(config: Config) -> Path:
    path = config.home / STASH_DIR
    path.mkdir(parents=True, exist_ok=True)
    return path


def template_path(extension: str, config: Config) -> Path:
    return stash_dir(config) / f"{TEMPLATE_STEM}.{extension.lstrip('.')}"


def stash_program(prog: str | Path, config: Config, as_template: bool = False) -> Path:
    """Copy *prog* into the stash, optionally as its language's template."""
    prog = Path(prog)
    if not prog.is_file():
        raise StoreError(f"'{prog}': no such file")
    if as_template:
        if not prog.suffix:
            raise StoreError(f"'{prog}': has no file extension")
        detect(prog)
        target = template_path(prog.suffix, config)
    else:
        target = stash_dir(config) / prog.name
    _copy(prog, target)
    logger.info("stashed '%s' as '%s'", prog, target)
    return target


def init_program(prog: str | Path, config: Config) -> Submission:
    """Create *prog* from the stashed template for its extension."""
    prog = Path(prog)
    if prog.exists():
        raise StoreError(f"file already exists: '{prog}'")
    submission = Submission.from_path(prog)
    template = template_path(prog.suffix, config)
    if not template.is_file():
        raise StoreError(f"no template stashed for '.{prog.suffix.lstrip('.')}' files")
    _copy(template, prog)
    return submission


def restore_program(prog: str | Path, config: Config) -> Path:
    """Overwrite *prog* with the version stashed away earlier."""
    prog = Path(prog)
    stashed = stash_dir(config) / prog.name
    if not stashed.is_file():
        raise StoreError(f"'{prog.name}': not found in stash")
    _copy(stashed, prog)
    return prog


def list_stash(config: Config) -> list[str]:
    return sorted(p.name for p in stash_dir(config).iterdir() if p.is_file())


def clear_stash(config: Config) -> int:
    """Remove everything stashed, templates included; returns the entry count."""
    removed = 0
    for entry in stash_dir(config).iterdir():
        try:
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
        except OSError as e:
            raise StoreError(f"could not remove '{entry}' ({e})") from e
        removed += 1
    logger.info("cleared %d stashed file(s)", removed)
    return removed


def _copy(src: Path, dst: Path) -> None:
    try:
        shutil.copyfile(src, dst)
    except OSError as e:
        raise StoreError(f"could not copy '{src}' to '{dst}' ({e})") from e
