"""compliance.py

Classify a compliance scan artifact.

Two strategies:

* ``substring`` (default): success iff the literal marker text appears
  anywhere in the file. The document is never parsed, so a truncated or
  malformed XML file that still contains the marker is a success. This
  weak check is the historical behaviour and is kept on purpose.
* ``strict``: parse the file as XML and succeed only if an element whose
  tag matches the marker's element name exists. Unparseable files are
  ``indeterminate``.

A missing or unreadable artifact is always ``indeterminate``. Nothing here
raises for file problems; classification is data, not control flow.
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from pathlib import Path

from logger import get_logger
from pipeline.config import DEFAULT_COMPLIANCE_MARKER
from pipeline.run_state import ComplianceResult

log = get_logger("secgate.compliance")

MODES = ("substring", "strict")

_TAG_RE = re.compile(r"<\s*/?\s*([^\s/>]+)")


def classify_text(text: str, marker: str = DEFAULT_COMPLIANCE_MARKER) -> ComplianceResult:
    if marker and marker in text:
        return ComplianceResult.SUCCESS
    return ComplianceResult.FAILURE


def marker_tag(marker: str) -> str:
    """``"<complianceScan>"`` -> ``"complianceScan"``; bare names pass through."""
    m = _TAG_RE.match(marker.strip())
    return m.group(1) if m else marker.strip()


def _local_name(tag: str) -> str:
    # "{namespace}name" -> "name"
    return tag.rsplit("}", 1)[-1]


def classify_xml(text: str, marker: str = DEFAULT_COMPLIANCE_MARKER) -> ComplianceResult:
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        log.warning(f"Compliance artifact is not well-formed XML: {e}")
        return ComplianceResult.INDETERMINATE

    wanted = marker_tag(marker)
    for el in root.iter():
        if _local_name(el.tag) == wanted:
            return ComplianceResult.SUCCESS
    return ComplianceResult.FAILURE


def classify_artifact(
    path: str | Path | None,
    marker: str = DEFAULT_COMPLIANCE_MARKER,
    mode: str = "substring",
) -> ComplianceResult:
    if mode not in MODES:
        raise ValueError(f"Unknown compliance mode: {mode!r}")

    if not path:
        log.warning("Compliance stage declares no artifact")
        return ComplianceResult.INDETERMINATE

    p = Path(path)
    if not p.is_file():
        log.warning(f"Compliance artifact not found: {p}")
        return ComplianceResult.INDETERMINATE

    try:
        text = p.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        log.warning(f"Compliance artifact unreadable: {p} ({e})")
        return ComplianceResult.INDETERMINATE

    if mode == "strict":
        return classify_xml(text, marker)
    return classify_text(text, marker)
