"""Core pipeline for page2svg."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup
from bs4.element import Comment, Declaration, Doctype, NavigableString, ProcessingInstruction

from .errors import ConversionError, ImageExternalizationError, OracleError, OracleTimeoutError
from .oracle import MathJaxNodeOracle, TypesetOracle, await_typeset, build_typeset_request

__all__ = [
    "ConversionConfig",
    "ConversionError",
    "ExtractedImage",
    "ImageExternalizationError",
    "OracleError",
    "OracleTimeoutError",
    "convert",
    "convert_document",
    "externalize_images",
    "parse_document",
    "remove_bootstrap_scripts",
    "resolve_mathml_prefix",
    "serialize_document",
    "setup_logging",
    "splice_typeset_result",
]

LOG = logging.getLogger("page2svg")

EXIT_INVALID_ARGS = 6
EXIT_ORACLE = 8
EXIT_IMAGE_WRITE = 9
EXIT_CONVERSION = 10

MATHML_NAMESPACE = "http://www.w3.org/1998/Math/MathML"
XMLNS_DECLARATION = "xmlns:"
DEFAULT_MATHML_PREFIX = "mml"

BOOTSTRAP_SRC_MARKER = "MathJax"
BOOTSTRAP_CONFIG_TYPE = "text/x-mathjax-config"
IMAGE_MARKER_CLASS = "MathJax_SVG_IMG"

SVG_PROLOGUE = (
    '<?xml version="1.0" standalone="no"?>',
    '<!DOCTYPE svg PUBLIC "-//W3C//DTD SVG 1.1//EN" "http://www.w3.org/Graphics/SVG/1.1/DTD/svg11.dtd">',
)
HTML_DOCTYPE = "<!DOCTYPE html>"

DEFAULT_FORMATS = ("AsciiMath", "TeX", "MathML")

_DATA_URI_HEADER_RE = re.compile(r"^.*?,")
_FORMAT_SPLIT_RE = re.compile(r" *, *")


@dataclass
class ConversionConfig:
    preview: bool = False
    speech: bool = False
    speech_rules: str = "mathspeak"
    speech_style: str = "default"
    linebreaks: bool = False
    no_dollars: bool = False
    no_font_cache: bool = False
    local_cache: bool = False
    formats: Tuple[str, ...] = DEFAULT_FORMATS
    eqno: str = "none"
    img: str = ""
    font: str = "TeX"
    ex: int = 6
    width: int = 100
    extensions: str = ""
    oracle_timeout: Optional[float] = None


@dataclass
class ExtractedImage:
    index: int
    path: Path
    payload: str = field(repr=False)


def parse_formats(value: str) -> Tuple[str, ...]:
    return tuple(part for part in _FORMAT_SPLIT_RE.split(value.strip()) if part)


def _resolve_log_level(verbose: bool, debug: bool) -> int:
    return logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)


def _configure_page2svg_logger(level: int) -> None:
    LOG.setLevel(level)
    LOG.propagate = False
    if not LOG.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        handler.setLevel(level)
        LOG.addHandler(handler)
    else:
        for handler in LOG.handlers:
            handler.setLevel(level)
            if handler.formatter is None:
                handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))


def setup_logging(verbose: bool, debug: bool) -> None:
    level = _resolve_log_level(verbose, debug)
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    _configure_page2svg_logger(level)


def _progress_bar_line(current: int, total: int, width: int = 24) -> str:
    if total <= 0:
        return "[?]"
    clamped = max(0, min(current, total))
    filled = min(int((clamped / total) * width), width)
    return "[" + "#" * filled + "." * (width - filled) + "]"


def _log_verbose_progress(prefix: str, current: int, total: int, detail: Optional[str] = None) -> None:
    bar = _progress_bar_line(current, total)
    counter = f"[{current}/{total}]" if total > 0 else f"[{current}]"
    if total > 0:
        msg = f"{prefix} {bar} {counter} ({(current / total) * 100.0:.1f}%)"
    else:
        msg = f"{prefix} {bar} {counter}"
    if detail:
        msg = f"{msg} | {detail}"
    LOG.info(msg)


def safe_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="\n") as f:
        f.write(text)


def parse_document(raw_html: str) -> BeautifulSoup:
    """Parse markup and guarantee a single html/head/body skeleton.

    Parsing is best-effort: malformed markup never raises, it just yields
    whatever tree the parser recovers. Content found outside ``<html>``, or
    after ``</body>`` inside it, is moved into ``<body>`` in document order.
    Comments, doctype and blank text outside ``<html>`` are not moved.
    """
    soup = BeautifulSoup(raw_html, "html.parser")

    root = soup.find("html")
    if root is None:
        root = soup.new_tag("html")
        for node in list(soup.contents):
            if isinstance(node, (Doctype, Declaration, ProcessingInstruction)):
                continue
            root.append(node)
        soup.append(root)

    head = root.find("head")
    if head is None:
        head = soup.new_tag("head")
        root.insert(0, head)

    body = root.find("body")
    if body is None:
        body = soup.new_tag("body")
        for node in list(root.contents):
            if node is head:
                continue
            body.append(node)
        root.append(body)

    _adopt_stray_nodes(soup, root, body)
    return soup


def _is_blank(node) -> bool:
    return isinstance(node, NavigableString) and not isinstance(node, Comment) and not node.strip()


def _adopt_stray_nodes(soup: BeautifulSoup, root, body) -> None:
    leading = []
    trailing = []
    seen_root = False
    for node in soup.contents:
        if node is root:
            seen_root = True
            continue
        if isinstance(node, (Doctype, Declaration, ProcessingInstruction, Comment)) or _is_blank(node):
            continue
        (trailing if seen_root else leading).append(node)

    after_body = []
    seen_body = False
    for node in root.contents:
        if node is body:
            seen_body = True
        elif seen_body and not _is_blank(node):
            after_body.append(node)

    for node in after_body + trailing:
        body.append(node)
    for position, node in enumerate(leading):
        body.insert(position, node)
    if after_body or trailing or leading:
        LOG.debug("Moved %d node(s) found outside <body> into it", len(after_body) + len(trailing) + len(leading))


def resolve_mathml_prefix(soup: BeautifulSoup) -> str:
    """Return the prefix bound to the MathML namespace on the root element.

    Attributes are checked in document order and the first ``xmlns:<prefix>``
    declaring the MathML URI wins. Falls back to ``"mml"``.
    """
    root = soup.find("html")
    if root is not None:
        for name, value in root.attrs.items():
            if name.startswith(XMLNS_DECLARATION) and value == MATHML_NAMESPACE:
                return name[len(XMLNS_DECLARATION) :]
    return DEFAULT_MATHML_PREFIX


def splice_typeset_result(soup: BeautifulSoup, result_html: str) -> BeautifulSoup:
    """Replace the body content with the oracle output.

    The oracle prepends exactly one shared-definitions node to its output;
    that node is moved into ``<head>``. An empty result leaves the head as is.
    """
    head = soup.head
    body = soup.body
    body.clear()

    fragment = BeautifulSoup(result_html or "", "html.parser")
    for node in list(fragment.contents):
        body.append(node)

    if body.contents:
        head.append(body.contents[0])
    else:
        LOG.debug("Typeset result is empty; nothing to relocate into <head>")
    return soup


def _is_bootstrap_script(script) -> bool:
    src = script.get("src")
    if src and BOOTSTRAP_SRC_MARKER in src:
        return True
    script_type = script.get("type")
    return bool(script_type) and script_type == BOOTSTRAP_CONFIG_TYPE


def remove_bootstrap_scripts(soup: BeautifulSoup) -> int:
    removed = 0
    for script in soup.find_all("script"):
        if _is_bootstrap_script(script):
            LOG.debug("Removing bootstrap script: %s", script.get("src") or script.get("type"))
            script.decompose()
            removed += 1
    return removed


def _decode_svg_payload(src: str) -> str:
    encoded = _DATA_URI_HEADER_RE.sub("", src, count=1)
    try:
        return base64.b64decode(encoded).decode("utf-8")
    except (binascii.Error, ValueError) as exc:
        raise ImageExternalizationError(f"Unable to decode embedded image payload: {exc}") from exc


def image_file_name(prefix: str, index: int) -> str:
    return f"{prefix}{index:04d}.svg"


def externalize_images(soup: BeautifulSoup, prefix: str) -> List[ExtractedImage]:
    """Write each marked image payload to ``<prefix><NNNN>.svg``.

    Ordinals follow document order starting at 1. The element's ``src`` is
    rewritten to the written path. Any failure aborts the whole run; files
    written before the failure are left in place.
    """
    images = soup.find_all(class_=IMAGE_MARKER_CLASS)
    total = len(images)
    extracted: List[ExtractedImage] = []

    for index, img in enumerate(images, start=1):
        src = img.get("src")
        if not src:
            raise ImageExternalizationError(f"Image {index} has no embedded payload to externalize")
        svg = _decode_svg_payload(src)
        file_name = image_file_name(prefix, index)
        path = Path(file_name)
        try:
            safe_write_text(path, "\n".join([*SVG_PROLOGUE, svg]))
        except OSError as exc:
            raise ImageExternalizationError(f"Unable to write image file {path}: {exc}") from exc
        img["src"] = file_name
        extracted.append(ExtractedImage(index=index, path=path, payload=svg))
        _log_verbose_progress("Externalizing images", index, total, detail=file_name)

    return extracted


def serialize_document(soup: BeautifulSoup) -> str:
    root = soup.find("html")
    markup = str(root) if root is not None else str(soup)
    return f"{HTML_DOCTYPE}\n{markup.lstrip()}"


async def convert_document(raw_html: str, config: ConversionConfig, oracle: TypesetOracle) -> str:
    soup = parse_document(raw_html)
    xmlns = resolve_mathml_prefix(soup)
    LOG.debug("MathML namespace prefix: %s", xmlns)

    request = build_typeset_request(config, soup.body.decode_contents(), xmlns)
    LOG.info("Typesetting with renderer %s (inputs: %s)", request.renderer, ", ".join(request.inputs))
    result = await await_typeset(oracle, request, timeout=config.oracle_timeout)

    splice_typeset_result(soup, result.html)
    removed = remove_bootstrap_scripts(soup)
    if removed:
        LOG.info("Removed %d bootstrap script(s)", removed)

    if config.img:
        extracted = externalize_images(soup, config.img)
        LOG.info("Externalized %d image(s) with prefix %s", len(extracted), config.img)

    return serialize_document(soup)


def convert(raw_html: str, config: Optional[ConversionConfig] = None, oracle: Optional[TypesetOracle] = None) -> str:
    config = config or ConversionConfig()
    if oracle is None:
        oracle = MathJaxNodeOracle(font=config.font, extensions=config.extensions)
    return asyncio.run(convert_document(raw_html, config, oracle))
