"""Runtime router: the player page and the SCORM API call endpoint.

The player page installs ``window.API`` and ``window.API_1484_11`` on the
parent document first and only then creates the content iframe, so the API
is present before any content script runs. Each API function forwards to
``POST /scorm/runtime/{launch_id}`` with a synchronous XHR because SCORM
content expects plain string return values.
"""
from __future__ import annotations
import json
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, Field

from scorm_runtime.services.launches import (
    Launch,
    LaunchNotFoundError,
    LaunchRegistry,
    get_launch_registry,
)
from scorm_runtime.services.scorm_api import (
    SCORM_12_METHODS,
    SCORM_2004_METHODS,
    ScormApi,
    UnknownApiMethodError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scorm", tags=["Runtime"])

# Calls after which the content may tear the frame down immediately.
FLUSHING_OPERATIONS = {"commit", "terminate"}

NOTICE_POLL_MS = 5000

PLAYER_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{title}</title>
<style>
  html, body {{ margin: 0; height: 100%; }}
  #scorm-frame-host, #scorm-frame-host iframe {{ width: 100%; height: 100%; border: 0; }}
  #scorm-notices {{ position: fixed; bottom: 1rem; right: 1rem; font-family: sans-serif; }}
  .scorm-notice {{ background: #b91c1c; color: #fff; padding: .5rem 1rem; margin-top: .5rem; border-radius: .25rem; }}
</style>
<script>
(function() {{
  var config = {config};

  function call(method, args) {{
    var xhr = new XMLHttpRequest();
    try {{
      xhr.open("POST", config.runtimeUrl, false);
      xhr.setRequestHeader("Content-Type", "application/json");
      xhr.send(JSON.stringify({{method: method, args: args}}));
    }} catch (e) {{
      return "false";
    }}
    if (xhr.status !== 200) {{
      return "false";
    }}
    return String(JSON.parse(xhr.responseText).result);
  }}

  function table(names) {{
    var api = {{}};
    names.forEach(function(name) {{
      api[name] = function() {{
        return call(name, Array.prototype.slice.call(arguments).map(String));
      }};
    }});
    return api;
  }}

  window.API = table(config.scorm12);
  window.API_1484_11 = table(config.scorm2004);

  function teardown() {{
    delete window.API;
    delete window.API_1484_11;
    fetch(config.runtimeUrl, {{method: "DELETE", keepalive: true}});
  }}
  window.addEventListener("pagehide", teardown, {{once: true}});

  function showNotice(notice) {{
    var host = document.getElementById("scorm-notices");
    var el = document.createElement("div");
    el.className = "scorm-notice";
    el.textContent = notice.message;
    host.appendChild(el);
    setTimeout(function() {{ host.removeChild(el); }}, 8000);
  }}

  document.addEventListener("DOMContentLoaded", function() {{
    var frame = document.createElement("iframe");
    frame.title = config.title;
    frame.setAttribute("sandbox", "allow-scripts allow-same-origin allow-forms allow-popups allow-downloads");
    frame.src = config.launchUrl;
    document.getElementById("scorm-frame-host").appendChild(frame);

    setInterval(function() {{
      fetch(config.runtimeUrl + "/notices")
        .then(function(r) {{ return r.ok ? r.json() : {{notices: []}}; }})
        .then(function(body) {{ body.notices.forEach(showNotice); }});
    }}, config.noticePollMs);
  }});
}})();
</script>
</head>
<body>
<div id="scorm-frame-host"></div>
<div id="scorm-notices"></div>
</body>
</html>
"""


class RuntimeCall(BaseModel):
    method: str = Field(..., min_length=1, max_length=64)
    args: List[str] = Field(default_factory=list, max_length=2)


def render_player(launch: Launch) -> str:
    config = {
        "title": launch.title,
        "launchUrl": launch.launch_url,
        "runtimeUrl": f"/api/v1/scorm/runtime/{launch.id}",
        "scorm12": list(SCORM_12_METHODS),
        "scorm2004": list(SCORM_2004_METHODS),
        "noticePollMs": NOTICE_POLL_MS,
    }
    # Keep "</script>" out of the inline JSON.
    config_json = json.dumps(config).replace("</", "<\\/")
    title = (
        launch.title.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
    )
    return PLAYER_TEMPLATE.format(title=title, config=config_json)


def _get_launch(registry: LaunchRegistry, launch_id: str) -> Launch:
    try:
        return registry.get(launch_id)
    except LaunchNotFoundError:
        raise HTTPException(status_code=404, detail="Launch not found")


@router.get("/player/{launch_id}", response_class=HTMLResponse)
async def player_page(
    launch_id: str, registry: LaunchRegistry = Depends(get_launch_registry)
):
    launch = _get_launch(registry, launch_id)
    return HTMLResponse(render_player(launch))


@router.post("/runtime/{launch_id}")
async def runtime_call(
    launch_id: str,
    payload: RuntimeCall,
    registry: LaunchRegistry = Depends(get_launch_registry),
):
    """Execute one SCORM API function for the launch."""
    launch = _get_launch(registry, launch_id)
    launch.touch()
    try:
        result = launch.api.call(payload.method, *payload.args)
    except UnknownApiMethodError:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown SCORM API method: {payload.method}",
        )
    if ScormApi.operation_for(payload.method) in FLUSHING_OPERATIONS:
        await launch.queue.drain()
    return {"result": result, "lastError": launch.api.get_last_error()}


@router.get("/runtime/{launch_id}/notices")
async def runtime_notices(
    launch_id: str, registry: LaunchRegistry = Depends(get_launch_registry)
):
    """Persistence failures since the last poll."""
    launch = _get_launch(registry, launch_id)
    # The player polls while it is open, which keeps the launch alive
    launch.touch()
    notices = list(launch.notices)
    launch.notices.clear()
    return {"notices": notices, "failures": launch.queue.failures}


@router.delete("/runtime/{launch_id}", status_code=status.HTTP_204_NO_CONTENT)
async def close_launch(
    launch_id: str, registry: LaunchRegistry = Depends(get_launch_registry)
):
    try:
        await registry.close(launch_id)
    except LaunchNotFoundError:
        raise HTTPException(status_code=404, detail="Launch not found")
    return None
