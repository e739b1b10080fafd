"""Contract between reelscan and the bundle running inside the browser page.

Every global name, entry point and version the served bundle is expected to expose
lives here so protocol drift shows up in one place.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlparse, urlunparse

BUNDLE_PROTOCOL_VERSION = "10"


@dataclass(frozen=True)
class RemoteOperation:
    """A global function exposed by the bundle on ``window``."""

    name: str

    def __str__(self) -> str:
        return self.name


SET_BUNDLE_MODE = RemoteOperation("remotion_setBundleMode")
GET_STATIC_COMPOSITIONS = RemoteOperation("getStaticCompositions")

EVALUATION_MODE: Dict[str, str] = {"type": "evaluation"}

READY_FLAG = "remotion_renderReady"
CANCELLED_ERROR = "remotion_cancelledError"
SITE_VERSION = "siteVersion"

READY_EXPRESSION = f"window.{READY_FLAG} === true || window.{CANCELLED_ERROR} !== undefined"

# Calls window[name](...args) and reports a throw or rejection as data, so the
# failure stays attributed to this call instead of surfacing as a page error.
CALL_WRAPPER = """
async ([name, args]) => {
  const fn = window[name];
  if (typeof fn !== 'function') {
    return {type: 'error', message: `window.${name} is not a function`, stack: null};
  }
  try {
    const value = await fn(...args);
    return {type: 'success', value};
  } catch (err) {
    return {
      type: 'error',
      message: err && err.message ? err.message : String(err),
      stack: err && err.stack ? err.stack : null,
    };
  }
}
"""

READ_GLOBAL = "(name) => window[name]"
TYPEOF_GLOBAL = "(name) => typeof window[name]"


def build_init_script(
    input_props: Dict[str, Any],
    env_variables: Dict[str, str],
    proxy_port: Optional[int],
    initial_frame: int = 0,
) -> str:
    """Script assigned to run before any bundle code on every navigation of the page.

    Input props and env variables are stored as JSON strings, which is what the
    bundle parses when its composition registry evaluates.
    """
    assignments = {
        "remotion_inputProps": json.dumps(input_props),
        "remotion_envVariables": json.dumps(env_variables),
        "remotion_initialFrame": initial_frame,
        "remotion_proxyPort": proxy_port,
        "remotion_audioEnabled": False,
        "remotion_videoEnabled": False,
    }
    return "\n".join(f"window.{key} = {json.dumps(value)};" for key, value in assignments.items())


def normalize_serve_url(serve_url: str) -> str:
    """Point a serve URL at the bundle's ``index.html``."""
    parsed = urlparse(serve_url)
    path = parsed.path or ""
    if path.endswith(".html"):
        return serve_url
    path = path.rstrip("/") + "/index.html"
    return urlunparse(parsed._replace(path=path))
