# appforge/prompts.py
from __future__ import annotations

import json
from typing import Iterable, Mapping, Optional

from .models import AppPlan, StructuredReview
from .reconcile import reconcile
from .stream_parser import FILE_END, FILE_START, PATH_END

NO_CHANGED_FILES = "No files were changed. This was likely an addition of new files."

REVIEW_CATEGORY_GUIDE = (
    "1.  'crashBugs': Critical bugs that will likely cause a runtime crash "
    "(e.g., NullPointerExceptions, incorrect view casting).\n"
    "2.  'uiUxImprovements': Suggestions to improve the user interface and experience "
    "(e.g., layout issues, unclear interactions).\n"
    "3.  'otherSuggestions': General feedback on best practices, code readability, and maintainability.\n"
)


def _header(path: str) -> str:
    return f"{FILE_START} {path}{PATH_END}"


def _plan_json(plan: AppPlan) -> str:
    return json.dumps(plan.to_dict(), indent=2, ensure_ascii=False)


def files_block(files: Mapping[str, str], *, label: Optional[str] = None, only: Optional[Iterable[str]] = None) -> str:
    """Concatenate files as ``---\\nFile: <path>\\n---\\n<content>`` sections."""
    wanted = set(only) if only is not None else None
    suffix = f" ({label})" if label else ""
    parts = []
    for path, content in files.items():
        if wanted is not None and path not in wanted:
            continue
        parts.append(f"\n\n---\nFile: {path}{suffix}\n---\n{content}")
    return "".join(parts)


def plan_prompt(idea: str) -> str:
    return (
        "You are an expert Android architect specializing in Java. Your task is to plan a complete, "
        f'simple, and functional Android application based on the user\'s idea: "{idea}".\n\n'
        "The app must be self-contained and not require external APIs or complex libraries unless "
        "absolutely necessary for the core functionality. The goal is a project that a user can "
        "immediately import into Android Studio, build, and run.\n\n"
        "Provide your response as a single JSON object. Ensure the file structure includes all "
        "necessary files for a basic, runnable Android project:\n"
        "- build.gradle (Project level)\n"
        "- app/build.gradle (App level)\n"
        "- settings.gradle\n"
        "- gradle.properties\n"
        "- app/proguard-rules.pro\n"
        "- app/src/main/AndroidManifest.xml\n"
        "- All necessary Java source files (MainActivity, etc.).\n"
        "- All necessary resource files (layouts, strings, colors, themes)."
    )


def file_code_prompt(plan: AppPlan, path: str) -> str:
    return (
        "Based on the following Android app plan, generate the complete, production-quality code "
        f'for the file located at "{path}".\n\n'
        f"**App Plan:**\n```json\n{_plan_json(plan)}\n```\n\n"
        "**Instructions:**\n"
        f'- Output ONLY the raw code for the file "{path}".\n'
        "- Do not include any explanations, markdown formatting (like ```java), or any text other "
        "than the code itself.\n"
        "- Ensure the code is syntactically correct and aligns with the overall app plan. For Java "
        f'files, use the correct package name ("{plan.package_name}").\n'
        "- For build.gradle files, include the specified dependencies.\n"
        "- For AndroidManifest.xml, include the specified permissions.\n"
    )


def review_prompt(files: Mapping[str, str]) -> str:
    return (
        "You are a meticulous senior Android code reviewer. I have generated an entire Android "
        "application. Here is the complete file structure and content:\n"
        f"{files_block(files)}\n\n"
        "**Task:**\n"
        "Perform a thorough code review. Your feedback must be a single JSON object.\n"
        "Categorize your suggestions into three lists:\n"
        f"{REVIEW_CATEGORY_GUIDE}\n"
        "Each suggestion in these lists must be an object with a unique 'id' (kebab-case string) "
        "and a concise 'description'.\n"
        "Your response must be a single, valid JSON object that adheres to the schema."
    )


def modification_prompt(request: str, plan: AppPlan, files: Mapping[str, str]) -> str:
    """Modification prompt; the answer is streamed in the file-block protocol."""
    example = "\n".join(
        [
            _header("app/src/main/java/com/example/app/MainActivity.java"),
            "package com.example.app;",
            "// ... new file content ...",
            "public class MainActivity extends AppCompatActivity {",
            "    // ...",
            "}",
            FILE_END,
            _header("app/src/main/res/layout/activity_main.xml"),
            "<LinearLayout ...>",
            "    <!-- new layout content -->",
            "</LinearLayout>",
            FILE_END,
        ]
    )
    return (
        "You are an expert Android developer specializing in Java. I have an existing Android "
        "application. I will provide you with all the current files and their content. The user "
        "wants to make a specific set of modifications.\n\n"
        f"**User's Requested Changes:**\n{request}\n\n"
        f"**Current Application Plan:**\n```json\n{_plan_json(plan)}\n```\n\n"
        f"**Complete Current Source Code:**\n{files_block(files)}\n\n"
        "**Your Task:**\n"
        "Implement the user's requested changes by providing the new, complete code for "
        "**only the files that need to be changed**.\n\n"
        "**Output Format:**\n"
        "You MUST stream your response using the following format. For each file you modify, output:\n"
        f"1. A single line with a file path delimiter: `{_header('[full/path/to/file]')}`\n"
        "2. The complete, new source code for that file.\n"
        f"3. A single line with a file end delimiter: `{FILE_END}`\n\n"
        f"**Example:**\n{example}\n\n"
        "**Important:**\n"
        "- Only include files that have changed.\n"
        "- The code you provide for each file must be the *entire* file content, not just a diff "
        "or a snippet.\n"
        "- Strictly adhere to the specified output format with the delimiters. Do not include any "
        "other text or explanations."
    )


def change_analysis_prompt(before: Mapping[str, str], after: Mapping[str, str]) -> str:
    """Summarise a modification and re-review the result.

    The BEFORE section only shows files that existed and changed; brand-new
    files appear only in the AFTER section.
    """
    changed = reconcile(before, after)
    before_text = files_block(before, label="BEFORE", only=changed) or NO_CHANGED_FILES
    return (
        "You are a meticulous senior Android code reviewer. An AI assistant has just modified an "
        "Android application.\n\n"
        "**Task:**\n"
        "You are given the source code BEFORE and AFTER the changes. Generate a single JSON object "
        "with two properties:\n"
        "1.  'changeSummary': A concise summary in Markdown format detailing the modifications made. "
        "Explain WHAT was changed and WHY.\n"
        "2.  'review': A new, structured code review of the application in its CURRENT state (AFTER "
        "the changes). The review must be an object with three lists of suggestions: 'crashBugs', "
        "'uiUxImprovements', and 'otherSuggestions'. Each suggestion must have a unique 'id' and a "
        "'description'.\n\n"
        f"**Source Code (BEFORE changes - only modified files are shown):**\n{before_text}\n\n"
        f"**Complete Source Code (AFTER changes):**\n{files_block(after, label='AFTER')}\n\n"
        "Provide your response as a single, valid JSON object that adheres to the schema."
    )


def import_analysis_prompt(files: Mapping[str, str]) -> str:
    return (
        "You are an expert Android architect. I'm providing you with the complete source code of an "
        "Android project. Your task is to analyze the entire project and generate the necessary "
        "metadata.\n\n"
        f"Here is the complete file structure and content of the application:\n{files_block(files)}\n\n"
        "**Your Task:**\n"
        "Analyze the provided source code and generate a single JSON object containing:\n"
        "1.  'plan': A complete application plan (appName, appDescription, packageName, permissions, "
        "dependencies, fileStructure).\n"
        "2.  'review': A thorough, structured code review. The review must be an object with three "
        "lists of suggestions: 'crashBugs', 'uiUxImprovements', and 'otherSuggestions'. Each "
        "suggestion must have a unique 'id' and a 'description'.\n\n"
        "**Output Format:**\n"
        "Provide your response as a single, valid JSON object that adheres to the provided schema. "
        "Do not include any text or explanations outside of the JSON object."
    )


def chat_system_instruction(plan: AppPlan) -> str:
    return (
        "You are an expert Android development assistant. You are helping a developer with their project.\n"
        f"Here is the project plan:\n{_plan_json(plan)}\n\n"
        "Your role is to answer questions, provide ideas, and explain concepts related to this specific "
        "Android project. Be helpful and concise. Format your answers in Markdown."
    )


def build_modification_request(
    review: StructuredReview,
    selected_ids: Iterable[str],
    custom_request: str = "",
) -> Optional[str]:
    """Compose a modification request from chosen review suggestions and free text.

    Returns None when nothing was selected and the custom text is blank.
    """
    wanted = set(selected_ids)
    chosen = [s.description for s in review.all_suggestions() if s.id in wanted]
    custom = (custom_request or "").strip()

    parts = []
    if chosen:
        parts.append("Implement the following suggestions:\n" + "\n".join(f"- {d}" for d in chosen))
    if custom:
        parts.append(f"Also, apply this custom request:\n{custom}")
    return "\n\n".join(parts) if parts else None


__all__ = [
    "NO_CHANGED_FILES",
    "build_modification_request",
    "change_analysis_prompt",
    "chat_system_instruction",
    "file_code_prompt",
    "files_block",
    "import_analysis_prompt",
    "modification_prompt",
    "plan_prompt",
    "review_prompt",
]
