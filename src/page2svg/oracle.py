"""Adapter for the external MathJax typesetting oracle."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, Sequence, Tuple

from .errors import OracleError, OracleTimeoutError

if TYPE_CHECKING:
    from .core import ConversionConfig

LOG = logging.getLogger("page2svg")

NODE_ENV = "PAGE2SVG_NODE"
MATHJAX_API_ENV = "PAGE2SVG_MATHJAX_API"
BRIDGE_SCRIPT = Path(__file__).with_name("bridge.js")

RENDERER_SVG = "SVG"
RENDERER_IMG = "IMG"


@dataclass(frozen=True)
class TypesetRequest:
    html: str
    renderer: str
    inputs: Tuple[str, ...]
    equation_numbers: str
    single_dollars: bool
    use_font_cache: bool
    use_global_cache: bool
    add_preview: bool
    speak_text: bool
    speak_ruleset: str
    speak_style: str
    ex: int
    width: int
    linebreaks: bool
    xmlns: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "html": self.html,
            "renderer": self.renderer,
            "inputs": list(self.inputs),
            "equationNumbers": self.equation_numbers,
            "singleDollars": self.single_dollars,
            "useFontCache": self.use_font_cache,
            "useGlobalCache": self.use_global_cache,
            "addPreview": self.add_preview,
            "speakText": self.speak_text,
            "speakRuleset": self.speak_ruleset,
            "speakStyle": self.speak_style,
            "ex": self.ex,
            "width": self.width,
            "linebreaks": self.linebreaks,
            "xmlns": self.xmlns,
        }


@dataclass
class TypesetResult:
    html: str


class TypesetOracle(Protocol):
    async def typeset(self, request: TypesetRequest) -> TypesetResult:
        ...


def normalize_speech_ruleset(ruleset: str) -> str:
    return "default" if ruleset.lower() == "chromevox" else ruleset


def normalize_font(font: str) -> str:
    return "STIX-Web" if font == "STIX" else font


def build_typeset_request(config: "ConversionConfig", html: str, xmlns: str) -> TypesetRequest:
    return TypesetRequest(
        html=html,
        renderer=RENDERER_IMG if config.img else RENDERER_SVG,
        inputs=tuple(config.formats),
        equation_numbers=config.eqno,
        single_dollars=not config.no_dollars,
        use_font_cache=not config.no_font_cache,
        use_global_cache=not config.local_cache,
        add_preview=config.preview,
        speak_text=config.speech,
        speak_ruleset=normalize_speech_ruleset(config.speech_rules),
        speak_style=config.speech_style,
        ex=config.ex,
        width=config.width,
        linebreaks=config.linebreaks,
        xmlns=xmlns,
    )


def parse_oracle_response(raw: bytes) -> TypesetResult:
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise OracleError(f"Typesetting oracle returned invalid JSON: {exc}") from exc
    html = payload.get("html") if isinstance(payload, dict) else None
    if not isinstance(html, str):
        raise OracleError("Typesetting oracle response has no 'html' string")
    return TypesetResult(html=html)


class MathJaxNodeOracle:
    """Runs ``bridge.js`` under Node.js for a single typeset request.

    The bridge drives the mathjax-node page API. One JSON message goes in on
    stdin and exactly one JSON message is expected back on stdout. Font and
    extensions are engine settings; everything else travels with the request,
    including the font-cache policy.
    """

    def __init__(
        self,
        *,
        font: str = "TeX",
        extensions: str = "",
        command: Optional[Sequence[str]] = None,
    ) -> None:
        self.font = normalize_font(font)
        self.extensions = extensions
        if command:
            self.command: List[str] = list(command)
        else:
            self.command = [os.environ.get(NODE_ENV) or "node", str(BRIDGE_SCRIPT)]

    def engine_config(self) -> Dict[str, Any]:
        return {"MathJax": {"SVG": {"font": self.font}}, "extensions": self.extensions}

    def build_message(self, request: TypesetRequest) -> bytes:
        message = {"config": self.engine_config(), "typeset": request.to_payload()}
        return json.dumps(message, ensure_ascii=False).encode("utf-8")

    async def typeset(self, request: TypesetRequest) -> TypesetResult:
        LOG.debug("Starting typesetting oracle: %s", " ".join(self.command))
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise OracleError(f"Unable to start typesetting oracle {self.command[0]}: {exc}") from exc

        try:
            stdout, stderr = await proc.communicate(self.build_message(request))
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise OracleError(f"Typesetting oracle exited with code {proc.returncode}: {detail}")
        if stderr:
            LOG.warning("Typesetting oracle reported: %s", stderr.decode("utf-8", errors="replace").strip())
        return parse_oracle_response(stdout)


async def await_typeset(
    oracle: TypesetOracle, request: TypesetRequest, timeout: Optional[float] = None
) -> TypesetResult:
    """Await the single oracle response.

    Without a timeout this waits indefinitely, so an oracle that never
    completes hangs the conversion.
    """
    if timeout is None:
        return await oracle.typeset(request)
    try:
        return await asyncio.wait_for(oracle.typeset(request), timeout)
    except asyncio.TimeoutError as exc:
        raise OracleTimeoutError(f"Typesetting oracle did not respond within {timeout:g}s") from exc
