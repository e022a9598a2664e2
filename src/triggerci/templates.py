# templates.py
"""
Starter workflows per framework.

These seed the definition store (`triggerci create NAME --framework react`);
they are never consulted while scheduling. Their `if:` gates are shell tests,
meant for an engine running with shell gates enabled.
"""
from __future__ import annotations

import logging
from typing import Callable, Dict, List, Protocol

from .dsl import job, sh, uses, workflow
from .model import StepDefinition, WorkflowDefinition

logger = logging.getLogger(__name__)

DEFAULT_TRIGGERS = ("push", "workflow_dispatch")


class WorkflowSuggester(Protocol):
    def suggest(self, framework: str, language: str) -> WorkflowDefinition:
        ...


def _has_script(script: str, manifest: str = "package.json") -> str:
    return f'test -f "{manifest}" && grep -q "{script}" "{manifest}"'


def _node_setup() -> List[StepDefinition]:
    return [
        uses("Checkout code", "actions/checkout@v3"),
        uses("Setup Node.js", "actions/setup-node@v3", with_={"node-version": "18"}),
        sh("Install dependencies", "npm ci"),
    ]


def _build_workflow(title: str, steps: List[StepDefinition]) -> WorkflowDefinition:
    return workflow(
        title,
        on=DEFAULT_TRIGGERS,
        build=job("Build and Test", *_node_setup(), *steps),
    )


def generic_workflow(language: str) -> WorkflowDefinition:
    return workflow(
        "Generic Build Workflow",
        on=DEFAULT_TRIGGERS,
        build=job(
            "Build",
            *_node_setup(),
            sh("Lint", "npm run lint", if_=_has_script("lint")),
            sh("Build", "npm run build", if_=_has_script("build")),
            sh("Test", "npm test", if_=_has_script("test")),
        ),
    )


def react_workflow(language: str) -> WorkflowDefinition:
    return _build_workflow("React Build Workflow", [
        sh("Lint", "npm run lint", if_=_has_script("lint")),
        sh("Test", "npm test", if_=_has_script("test")),
        sh("Build", "npm run build"),
        sh("Analyze bundle", 'npx source-map-explorer "build/static/js/*.js"', if_='test -d "build/static/js"'),
    ])


def nextjs_workflow(language: str) -> WorkflowDefinition:
    return _build_workflow("Next.js Build Workflow", [
        sh("Lint", "npm run lint"),
        sh("Test", "npm test", if_=_has_script("test")),
        sh("Build", "npm run build"),
        sh(
            "Analyze bundle",
            "npx cross-env ANALYZE=true npm run build",
            if_=_has_script("withBundleAnalyzer", "next.config.js"),
        ),
    ])


def vue_workflow(language: str) -> WorkflowDefinition:
    return _build_workflow("Vue Build Workflow", [
        sh("Lint", "npm run lint", if_=_has_script("lint")),
        sh("Test", "npm run test:unit", if_=_has_script("test:unit")),
        sh("Build", "npm run build"),
    ])


def angular_workflow(language: str) -> WorkflowDefinition:
    return _build_workflow("Angular Build Workflow", [
        sh("Lint", "ng lint", if_=_has_script("lint", "angular.json")),
        sh("Test", "ng test --watch=false --browsers=ChromeHeadless"),
        sh("Build", "ng build --configuration production"),
    ])


def node_workflow(language: str) -> WorkflowDefinition:
    return _build_workflow("Node.js Build Workflow", [
        sh("Lint", "npm run lint", if_=_has_script("lint")),
        sh("Test", "npm test", if_=_has_script("test")),
        sh("Build", "npm run build", if_=_has_script("build")),
    ])


def nestjs_workflow(language: str) -> WorkflowDefinition:
    return _build_workflow("NestJS Build Workflow", [
        sh("Lint", "npm run lint"),
        sh("Test", "npm run test"),
        sh("Test e2e", "npm run test:e2e", if_=_has_script("test:e2e")),
        sh("Build", "npm run build"),
    ])


TEMPLATES: Dict[str, Callable[[str], WorkflowDefinition]] = {
    "react": react_workflow,
    "nextjs": nextjs_workflow,
    "vue": vue_workflow,
    "angular": angular_workflow,
    "node": node_workflow,
    "express": node_workflow,
    "nestjs": nestjs_workflow,
}


def get_workflow_template(framework: str, language: str) -> WorkflowDefinition:
    builder = TEMPLATES.get((framework or "").strip().lower(), generic_workflow)
    return builder(language)


class TemplateSuggester:
    """Suggests one of the built-in templates; unknown frameworks get the generic one."""

    def suggest(self, framework: str, language: str) -> WorkflowDefinition:
        logger.info("Suggesting workflow for %s (%s)", framework, language)
        return get_workflow_template(framework, language)
