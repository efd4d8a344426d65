# appforge/core.py
from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .archive import ArchiveImportError, archive_filename, write_archive
from .chat import ProjectChat
from .config import ConfigError, DEFAULT_CONFIG_PATH, load_config, save_default_config
from .file_tree import render_tree, tree_for_project
from .llm_client import LLMClient, ModelResponseError, StreamAborted
from .logging_utils import configure_logging
from .models import GenerationStatus, Project, SchemaValidationError
from .project_store import (
    JsonFileProjectStore,
    ProjectNotFoundError,
    ProjectStoreError,
    delete_project,
    get_project,
)
from .prompts import build_modification_request
from .reconcile import unified_diff
from .stages import NoChangesProduced, generate_project, import_archive, modify_project
from .state import TransitionError

logger = logging.getLogger(__name__)

# Errors reported to the user as one line instead of a traceback.
_USER_ERRORS = (
    ArchiveImportError,
    ConfigError,
    ModelResponseError,
    NoChangesProduced,
    ProjectNotFoundError,
    ProjectStoreError,
    SchemaValidationError,
    StreamAborted,
    TransitionError,
    ValueError,
)


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser("appforge", add_help=True, description="Generate and evolve Android app projects with an LLM.")
    p.add_argument("--config", default="", help=f"Path to config JSON (default: {DEFAULT_CONFIG_PATH})")
    p.add_argument("--init-config", action="store_true", help="Write the default config file and exit")
    p.add_argument("--store", default="", help="Path to the project collection JSON (overrides config)")
    p.add_argument("--log-level", default="", help="Logging level (overrides config)")

    sub = p.add_subparsers(dest="command")

    sub.add_parser("list", help="List stored projects")

    sp = sub.add_parser("show", help="Show a project's plan and review")
    sp.add_argument("project_id")
    sp.add_argument("--json", action="store_true", help="Print the full project record as JSON")

    sp = sub.add_parser("tree", help="Print a project's file tree")
    sp.add_argument("project_id")

    sp = sub.add_parser("generate", help="Plan, generate and review a new project")
    sp.add_argument("prompt", nargs="+", help="Description of the app")

    sp = sub.add_parser("modify", help="Apply review suggestions and/or a custom request")
    sp.add_argument("project_id")
    sp.add_argument("--suggestion", "-s", action="append", default=[], help="Review suggestion id (repeatable)")
    sp.add_argument("--request", "-r", default="", help="Custom modification request")
    sp.add_argument("--diff", action="store_true", help="Print a unified diff of the touched files")

    sp = sub.add_parser("import", help="Import a project from a zip archive")
    sp.add_argument("archive", help="Path to the .zip file")

    sp = sub.add_parser("export", help="Export a project as a zip archive")
    sp.add_argument("project_id")
    sp.add_argument("-o", "--output", default="", help="Output path (default: <appName>.zip)")

    sp = sub.add_parser("delete", help="Delete a stored project")
    sp.add_argument("project_id")

    sp = sub.add_parser("chat", help="Interactive chat about a project")
    sp.add_argument("project_id")

    sp = sub.add_parser("serve", help="Run the HTTP API server")
    sp.add_argument("--host", default="", help="Bind host (overrides config)")
    sp.add_argument("--port", type=int, default=0, help="Bind port (overrides config)")
    return p


# ---------- helpers

def _run_cancellable(fn: Callable[[threading.Event], Any]) -> Any:
    """Run ``fn(cancel)`` in a worker thread; Ctrl-C sets ``cancel`` and waits for it to stop."""
    cancel = threading.Event()
    box: Dict[str, Any] = {}

    def target() -> None:
        try:
            box["result"] = fn(cancel)
        except BaseException as e:
            box["error"] = e

    worker = threading.Thread(target=target, name="appforge-transition", daemon=True)
    worker.start()
    while worker.is_alive():
        try:
            worker.join(0.2)
        except KeyboardInterrupt:
            print("\nCancelling; keeping what has arrived...", file=sys.stderr)
            cancel.set()
    if "error" in box:
        raise box["error"]
    return box.get("result")


def _print_status(status: GenerationStatus) -> None:
    print(f"[{status.progress:3d}%] {status.stage}: {status.message}", file=sys.stderr)


def _print_review(project: Project) -> None:
    review = project.review
    sections = (
        ("Crash bugs", review.crash_bugs),
        ("UI/UX improvements", review.ui_ux_improvements),
        ("Other suggestions", review.other_suggestions),
    )
    for title, items in sections:
        print(f"\n{title}:")
        if not items:
            print("  (none)")
        for s in items:
            print(f"  [{s.id}] {s.description}")


def _require(store: JsonFileProjectStore, project_id: str) -> Project:
    project = get_project(store, project_id)
    if project is None:
        raise ValueError(f"project not found: {project_id}")
    return project


# ---------- commands

def _cmd_list(args_ns, cfg, store) -> int:
    projects = store.load_all()
    if not projects:
        print("No projects yet.")
        return 0
    for p in projects:
        print(f"{p.id}  {p.created_at}  {p.plan.app_name}  ({len(p.files)} files)")
    return 0


def _cmd_show(args_ns, cfg, store) -> int:
    project = _require(store, args_ns.project_id)
    if args_ns.json:
        print(json.dumps(project.to_dict(), indent=2, ensure_ascii=False))
        return 0
    plan = project.plan
    print(f"{plan.app_name} ({plan.package_name})")
    print(plan.app_description)
    print(f"Prompt: {project.prompt}")
    print(f"Created: {project.created_at}")
    print(f"Permissions: {', '.join(plan.permissions) or '-'}")
    print(f"Dependencies: {', '.join(plan.dependencies) or '-'}")
    _print_review(project)
    return 0


def _cmd_tree(args_ns, cfg, store) -> int:
    print(render_tree(tree_for_project(_require(store, args_ns.project_id))))
    return 0


def _cmd_generate(args_ns, cfg, store) -> int:
    prompt = " ".join(args_ns.prompt)
    with LLMClient(cfg) as client:
        project = _run_cancellable(
            lambda cancel: generate_project(prompt, client, store, on_status=_print_status, cancel=cancel)
        )
    print(project.id)
    return 0


def _cmd_modify(args_ns, cfg, store) -> int:
    project = _require(store, args_ns.project_id)
    text = build_modification_request(project.review, args_ns.suggestion, args_ns.request)
    if text is None:
        print("Nothing to do: pass --suggestion and/or --request.", file=sys.stderr)
        return 2
    accept_truncated = bool(cfg["parser"]["accept_truncated"])
    with LLMClient(cfg) as client:
        result = _run_cancellable(
            lambda cancel: modify_project(
                project, text, client, store, cancel=cancel, accept_truncated=accept_truncated
            )
        )
    print(result.change_summary)
    print(f"\nChanged: {', '.join(sorted(result.changed)) or '-'}")
    print(f"Added: {', '.join(sorted(result.added)) or '-'}")
    if args_ns.diff:
        print(unified_diff(result.previous.files, result.project.files, result.changed | result.added))
    return 0


def _cmd_import(args_ns, cfg, store) -> int:
    data = Path(args_ns.archive).read_bytes()
    try:
        client: Optional[LLMClient] = LLMClient(cfg)
    except ConfigError:
        # Archives carrying project.json import without a model.
        client = None
    try:
        project = import_archive(data, client, store)
    finally:
        if client is not None:
            client.close()
    print(project.id)
    return 0


def _cmd_export(args_ns, cfg, store) -> int:
    project = _require(store, args_ns.project_id)
    out = Path(args_ns.output or archive_filename(project))
    out.write_bytes(write_archive(project))
    print(str(out))
    return 0


def _cmd_delete(args_ns, cfg, store) -> int:
    if not delete_project(store, args_ns.project_id):
        raise ValueError(f"project not found: {args_ns.project_id}")
    return 0


def _cmd_chat(args_ns, cfg, store) -> int:
    project = _require(store, args_ns.project_id)
    with LLMClient(cfg) as client:
        chat = ProjectChat(client, project.plan)
        print(f"Chatting about {project.plan.app_name}. Empty line or Ctrl-D to quit.")
        while True:
            try:
                line = input("you> ").strip()
            except EOFError:
                break
            if not line:
                break
            try:
                for chunk in chat.send(line):
                    print(chunk, end="", flush=True)
                print()
            except Exception:
                print(chat.history[-1].text)
    return 0


def _cmd_serve(args_ns, cfg, store) -> int:
    from .server import run

    return run(args_ns, cfg)


_COMMANDS: Dict[str, Callable[..., int]] = {
    "list": _cmd_list,
    "show": _cmd_show,
    "tree": _cmd_tree,
    "generate": _cmd_generate,
    "modify": _cmd_modify,
    "import": _cmd_import,
    "export": _cmd_export,
    "delete": _cmd_delete,
    "chat": _cmd_chat,
    "serve": _cmd_serve,
}


def main(argv: Optional[List[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = _build_parser()
    args_ns = parser.parse_args(argv)

    if args_ns.init_config:
        path = Path(args_ns.config) if args_ns.config else DEFAULT_CONFIG_PATH
        save_default_config(path)
        print(f"Wrote default config to {path}")
        return 0

    try:
        cfg, cfg_path = load_config(args_ns.config or None)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    if args_ns.store:
        cfg["store"]["path"] = args_ns.store
    if args_ns.log_level:
        cfg.setdefault("logging", {})["level"] = args_ns.log_level.upper()

    log_cfg = cfg.get("logging") or {}
    configure_logging(
        log_cfg.get("level", "INFO"),
        log_file=log_cfg.get("file"),
        structured=bool(log_cfg.get("structured", True)),
    )
    logger.debug("configuration loaded", extra={"meta": {"config_path": str(cfg_path) if cfg_path else None}})

    if not args_ns.command:
        parser.print_help()
        return 2

    store = JsonFileProjectStore(cfg["store"]["path"])
    try:
        return _COMMANDS[args_ns.command](args_ns, cfg, store)
    except _USER_ERRORS as e:
        logger.error("command failed", extra={"meta": {"command": args_ns.command, "err": str(e)}})
        print(f"error: {e}", file=sys.stderr)
        return 1


__all__ = ["main"]
