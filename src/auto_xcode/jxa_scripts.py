"""
JavaScript for Automation snippets sent to Xcode through the script bridge.

Every function returns a self-contained script string. User-supplied values
are embedded with ``json.dumps`` so they arrive as JavaScript string literals.
"""

import json
from typing import Any, Dict, Optional, Sequence

_ACTIVE_WORKSPACE = """
    const app = Application('Xcode');
    const workspace = app.activeWorkspaceDocument();
    if (!workspace) throw new Error('No active workspace');
"""


def _wrap(body: str) -> str:
    return f"(function() {{{_ACTIVE_WORKSPACE}{body}\n}})()"


def list_schemes_script() -> str:
    return _wrap(
        """
    const names = workspace.schemes().map(scheme => scheme.name());
    let active = null;
    try { active = workspace.activeScheme().name(); } catch (e) {}
    return JSON.stringify({ names: names, active: active });"""
    )


def list_destinations_script() -> str:
    return _wrap(
        """
    const names = workspace.runDestinations().map(dest => dest.name());
    let active = null;
    try { active = workspace.activeRunDestination().name(); } catch (e) {}
    return JSON.stringify({ names: names, active: active });"""
    )


def set_scheme_script(scheme_name: str) -> str:
    return _wrap(
        f"""
    const schemes = workspace.schemes();
    const target = schemes.find(scheme => scheme.name() === {json.dumps(scheme_name)});
    if (!target) throw new Error('Scheme not found. Available: ' + JSON.stringify(schemes.map(s => s.name())));
    workspace.activeScheme = target;
    return 'Scheme set to ' + target.name();"""
    )


def set_destination_script(destination: str) -> str:
    return _wrap(
        f"""
    const destinations = workspace.runDestinations();
    const target = destinations.find(dest => dest.name() === {json.dumps(destination)});
    if (!target) throw new Error('Destination not found. Available: ' + JSON.stringify(destinations.map(d => d.name())));
    workspace.activeRunDestination = target;
    return 'Destination set to ' + target.name();"""
    )


def build_script() -> str:
    return _wrap(
        """
    workspace.build();
    return 'Build started';"""
    )


def clean_script() -> str:
    return _wrap(
        """
    const actionResult = workspace.clean();
    while (!actionResult.completed()) { delay(0.5); }
    return 'Clean completed. Result ID: ' + actionResult.id();"""
    )


def _action_options(command_line_arguments: Optional[Sequence[str]]) -> str:
    if command_line_arguments:
        return json.dumps({"withCommandLineArguments": list(command_line_arguments)})
    return ""


def run_tests_script(command_line_arguments: Optional[Sequence[str]] = None) -> str:
    """Start the test action and block inside the IDE until it reports completion."""
    return _wrap(
        f"""
    const actionResult = workspace.test({_action_options(command_line_arguments)});
    while (!actionResult.completed()) {{ delay(0.5); }}
    const status = actionResult.status();
    const errorMessage = actionResult.errorMessage();
    if (status === 'failed' && errorMessage) {{
      return JSON.stringify({{ status: 'failed', error: errorMessage }});
    }}
    return JSON.stringify({{ status: status || 'completed' }});"""
    )


def run_script(command_line_arguments: Optional[Sequence[str]] = None) -> str:
    return _wrap(
        f"""
    const result = workspace.run({_action_options(command_line_arguments)});
    return 'Run started. Result ID: ' + result.id();"""
    )


def debug_script(scheme: Optional[str] = None, skip_building: bool = False) -> str:
    params: Dict[str, Any] = {}
    if scheme:
        params["scheme"] = scheme
    if skip_building:
        params["skipBuilding"] = True
    args = json.dumps(params) if params else ""
    return _wrap(
        f"""
    const result = workspace.debug({args});
    return 'Debug started. Result ID: ' + result.id();"""
    )


def stop_script() -> str:
    return _wrap(
        """
    workspace.stop();
    return 'Stop command sent';"""
    )


def ide_running_script() -> str:
    return """(function() {
    try {
      return Application('Xcode').running() ? 'running' : 'not-running';
    } catch (error) {
      return 'not-running';
    }
})()"""


def open_project_script(project_path: str) -> str:
    return f"""(function() {{
    const app = Application('Xcode');
    app.open({json.dumps(project_path)});
    return 'Project opened successfully';
}})()"""


def workspace_loaded_script() -> str:
    return """(function() {
    const app = Application('Xcode');
    const workspace = app.activeWorkspaceDocument();
    if (!workspace) return 'no-workspace';
    try {
      return workspace.loaded() ? 'loaded' : 'loading';
    } catch (error) {
      return 'loading';
    }
})()"""


def launch_ide_script(app_path: str, max_wait: int = 30) -> str:
    return f"""(function() {{
    const app = Application({json.dumps(app_path)});
    app.launch();
    let attempts = 0;
    while (!app.running() && attempts < {int(max_wait)}) {{
      delay(1);
      attempts++;
    }}
    return app.running() ? 'launched' : 'timeout';
}})()"""


def active_workspace_status_script(project_path: str) -> str:
    """Report whether ``project_path`` is the active workspace and has finished loading."""
    return f"""(function() {{
    const app = Application('Xcode');
    const workspace = app.activeWorkspaceDocument();
    if (!workspace) return JSON.stringify({{ isOpen: false }});
    try {{
      if (workspace.path() !== {json.dumps(project_path)}) {{
        return JSON.stringify({{ isOpen: false, differentProject: workspace.path() }});
      }}
      return JSON.stringify({{ isOpen: true, isLoaded: workspace.schemes().length > 0 }});
    }} catch (error) {{
      return JSON.stringify({{ isOpen: false, error: error.message }});
    }}
}})()"""
