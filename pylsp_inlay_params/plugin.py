"""pylsp-inlay-params: parameter-name inlay hints for python-lsp-server.

Strategy: pylsp's hookspecs.py does not define a hookspec for inlay hints as
a proper capability, so this plugin uses a two-pronged approach:

  1. Capability injection (preferred): at import time, monkey-patch
     PythonLSPServer.capabilities() to insert inlayHintProvider directly
     into the proper capabilities dict. This makes the plugin work
     out-of-the-box with clients that require proper capabilities (eglot,
     Neovim, etc.).

  2. Fallback via pylsp_experimental_capabilities: if the injection fails
     (e.g. pylsp changed its internal API), the capability is announced
     via the experimental channel instead.

  3. Register a custom JSON-RPC dispatcher via pylsp_dispatchers that
     intercepts "textDocument/inlayHint" and answers it with the hints
     computed by pylsp_inlay_params.hints on top of Jedi.
"""
from __future__ import annotations
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import jedi
from pylsp import hookimpl

from pylsp_inlay_params.hints import DEFAULT_FORBIDDEN_SOURCE_UNITS
from pylsp_inlay_params.jedi_resolver import LineIndex, collect_document_hints
from pylsp_inlay_params.model import TOGGLE_SPECS, FeatureToggles

log = logging.getLogger(__name__)

PLUGIN_NAME = "inlay_params"

# LSP InlayHintKind.Parameter
_PARAMETER_HINT_KIND = 2

# ---------------------------------------------------------------------------
# Capability injection (monkey-patch)
# ---------------------------------------------------------------------------
# pylsp has no hookspec for proper capabilities, so we attempt to inject
# inlayHintProvider directly into PythonLSPServer.capabilities() at import
# time. If that fails, pylsp_experimental_capabilities announces it instead.
# ---------------------------------------------------------------------------

def _inject_capabilities() -> bool:
    """Inject inlayHintProvider into pylsp's server capabilities.

    Returns True if injection succeeded, False otherwise.
    The caller must not raise on False - the experimental hook is the fallback.
    """
    try:
        from pylsp import python_lsp
        _original = python_lsp.PythonLSPServer.capabilities

        def _patched(self):
            caps = _original(self)
            caps.setdefault("inlayHintProvider", {"resolveProvider": False})
            return caps

        python_lsp.PythonLSPServer.capabilities = _patched
        log.info("pylsp_inlay_params: capabilities injected into PythonLSPServer")
        return True
    except Exception as e:  # pragma: no cover
        log.warning(
            "pylsp_inlay_params: capability injection failed (%s) "
            "- falling back to pylsp_experimental_capabilities",
            e,
        )
        return False


# True -> proper capability announced (eglot, Neovim, etc. work out of the box)
# False -> fallback to pylsp_experimental_capabilities
_CAPS_INJECTED = _inject_capabilities()

# One Script per document path, reused while the buffer is unchanged
_JEDI_CACHE: Dict[str, Tuple[str, jedi.Script]] = {}
_CACHE_LOCK = threading.Lock()


@hookimpl
def pylsp_settings(config) -> dict:
    """Declare default configuration for this plugin."""
    settings: Dict[str, Any] = {"enabled": True}
    settings.update({spec.setting: spec.default for spec in TOGGLE_SPECS})
    settings["forbidden_source_units"] = sorted(DEFAULT_FORBIDDEN_SOURCE_UNITS)
    settings["max_hints_per_file"] = 200  # <= 0 means no limit
    return {"plugins": {PLUGIN_NAME: settings}}


@hookimpl
def pylsp_experimental_capabilities(config, workspace) -> dict:
    """Advertise inlayHintProvider when direct injection failed."""
    if _CAPS_INJECTED:
        return {}
    if not config.plugin_settings(PLUGIN_NAME).get("enabled", True):
        return {}
    log.info("pylsp_inlay_params: announcing inlayHintProvider via experimental fallback")
    return {"inlayHintProvider": {"resolveProvider": False}}


@hookimpl
def pylsp_dispatchers(config, workspace) -> dict:
    """Register the textDocument/inlayHint handler."""
    settings = config.plugin_settings(PLUGIN_NAME)
    if not settings.get("enabled", True):
        return {}

    def _inlay_hint(params) -> List[dict]:
        # pylsp_jsonrpc calls handlers with the raw params dict as a single
        # positional argument
        if not isinstance(params, dict):
            return []

        text_doc = params.get("textDocument") or {}
        uri = text_doc.get("uri")
        if not uri:
            return []

        range_ = params.get("range") or {"start": {"line": 0}, "end": {"line": 10**9}}
        start_line = range_.get("start", {}).get("line", 0)
        end_line = range_.get("end", {}).get("line", 10**9)

        try:
            # Re-read per request so settings changes apply without restart
            document = workspace.get_document(uri)
            return _get_inlay_hints(
                document.source,
                document.path,
                config.plugin_settings(PLUGIN_NAME),
                start_line,
                end_line,
            )
        except Exception as e:
            log.error("pylsp_inlay_params: failed for %s: %s", uri, e)
            return []

    return {"textDocument/inlayHint": _inlay_hint}


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

@dataclass
class ParameterHint:
    """A parameter-name hint placed before an argument."""
    line: int
    character: int
    label: str

    def to_hint(self) -> dict:
        """Build the LSP InlayHint dict."""
        return {
            "position": {"line": self.line, "character": self.character},
            "label": self.label,
            "kind": _PARAMETER_HINT_KIND,
            "paddingLeft": False,
            "paddingRight": True,
            "tooltip": f"Parameter: {self.label}",
        }


def _get_script(source_code: str, path: Optional[str]) -> jedi.Script:
    if path is None:
        return jedi.Script(code=source_code)
    with _CACHE_LOCK:
        cached = _JEDI_CACHE.get(path)
        if cached is not None and cached[0] == source_code:
            return cached[1]
        script = jedi.Script(code=source_code, path=path)
        _JEDI_CACHE[path] = (source_code, script)
        return script


def _get_inlay_hints(
    source_code: str,
    path: Optional[str],
    settings: dict,
    start_line: int = 0,
    end_line: int = 10**9,
) -> List[dict]:
    """Compute parameter-name inlay hints for lines start_line..end_line.

    The range is applied before max_hints_per_file, so the limit caps one
    response rather than hiding calls further down the file.
    """
    toggles = FeatureToggles.from_settings(settings)
    forbidden_units = frozenset(
        settings.get("forbidden_source_units", DEFAULT_FORBIDDEN_SOURCE_UNITS)
    )

    script = _get_script(source_code, path)
    candidates = collect_document_hints(script, source_code, path, toggles, forbidden_units)

    index = LineIndex(source_code)
    hints = []
    for candidate in candidates:
        line, character = index.position(candidate.offset)
        if start_line <= line <= end_line:
            hints.append(ParameterHint(line, character, candidate.text).to_hint())

    max_hints = settings.get("max_hints_per_file", 200)
    if max_hints > 0 and len(hints) > max_hints:
        hints = hints[:max_hints]
    return hints


@hookimpl
def pylsp_document_did_close(config, workspace, document):
    """Drop the cached Jedi Script when the document is closed."""
    with _CACHE_LOCK:
        _JEDI_CACHE.pop(document.path, None)


@hookimpl
def pylsp_document_did_save(config, workspace, document):
    """Drop the cached Jedi Script on save so imports are re-read."""
    with _CACHE_LOCK:
        _JEDI_CACHE.pop(document.path, None)
