import asyncio
import base64
import re

import pytest

from page2svg.oracle import TypesetResult

DEFS_NODE = '<div id="MathJax_SVG_Hidden"><svg><defs><path id="MJMATHI-78"></path></defs></svg></div>'
_DOLLAR_MATH_RE = re.compile(r"\$([^$]+)\$")


def _svg_for(tex: str) -> str:
    return f'<svg class="math" data-tex="{tex}"><use href="#MJMATHI-78"></use></svg>'


class FakeOracle:
    """Stands in for MathJax: replaces $...$ and prepends one defs node."""

    def __init__(self, *, font="TeX", extensions="", result=None, error=None, delay=None):
        self.font = font
        self.extensions = extensions
        self.result = result
        self.error = error
        self.delay = delay
        self.requests = []

    async def typeset(self, request):
        self.requests.append(request)
        if self.delay is not None:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.result is not None:
            return TypesetResult(html=self.result)

        def _render(match):
            svg = _svg_for(match.group(1))
            if request.renderer == "IMG":
                encoded = base64.b64encode(svg.encode("utf-8")).decode("ascii")
                return f'<img class="MathJax_SVG_IMG" src="data:image/svg+xml;base64,{encoded}"/>'
            return svg

        body = _DOLLAR_MATH_RE.sub(_render, request.html) if request.single_dollars else request.html
        return TypesetResult(html=DEFS_NODE + body)


@pytest.fixture
def fake_oracle():
    return FakeOracle
