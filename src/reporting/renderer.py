"""Rendering of notification messages from Jinja2 templates.

Templates are looked up in the configured template directory first, then in
the templates bundled with this package. A template is compiled once and
kept for the life of the renderer; rendering itself has no side effects.

Variables available to templates:
    target_id, image          Target identifier and image reference
    id, name                  Aliases of target_id and image
    timestamp                 Scan time as an ISO-8601 string (UTC)
    scanned_at                Scan time as a datetime
    finding_count             Number of findings in the report
    severity_counts           Mapping CRITICAL/HIGH/MEDIUM/LOW/UNKNOWN -> count
    threshold                 The target's severity threshold
    threshold_count           Findings at or above the threshold
    findings                  List of dicts: identifier, package, installed_version,
                              fixed_version ("none available" if unfixed),
                              severity, title, meets_threshold
    findings_text             Preformatted one-line-per-finding listing
"""

import logging
import threading
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path

import jinja2

from src.consts import BUNDLED_TEMPLATE_DIR
from src.errors import TemplateNotFound, TemplateRenderError
from src.models.model_scanner import Finding, SeverityCounts
from src.models.model_target import Target

logger = logging.getLogger(__name__)

NO_FIX_AVAILABLE = "none available"


def format_finding(finding: Finding) -> str:
    """Format one finding as a single report line."""
    fixed = finding.fixed_version or NO_FIX_AVAILABLE
    version = f" {finding.installed_version}" if finding.installed_version else ""
    return (
        f"- [{finding.severity.value}] {finding.identifier} in "
        f"{finding.package}{version} (fixed: {fixed})"
    )


def build_context(
    target: Target,
    findings: Sequence[Finding],
    scanned_at: datetime | None = None,
) -> dict:
    """Build the template variables for a report."""
    scanned_at = scanned_at or datetime.now(UTC)
    counts = SeverityCounts.of(findings)
    threshold = target.severity_threshold

    finding_rows = [
        {
            "identifier": f.identifier,
            "package": f.package,
            "installed_version": f.installed_version,
            "fixed_version": f.fixed_version or NO_FIX_AVAILABLE,
            "severity": f.severity.value,
            "title": f.title or "",
            "meets_threshold": f.severity.meets(threshold),
        }
        for f in findings
    ]

    return {
        "target_id": target.id,
        "image": target.image,
        "id": target.id,
        "name": target.image,
        "timestamp": scanned_at.replace(microsecond=0).isoformat(),
        "scanned_at": scanned_at,
        "finding_count": len(findings),
        "severity_counts": counts.as_dict(),
        "threshold": threshold.value,
        "threshold_count": sum(1 for row in finding_rows if row["meets_threshold"]),
        "findings": finding_rows,
        "findings_text": "\n".join(format_finding(f) for f in findings),
    }


class ReportRenderer:
    """Renders notification messages from named templates."""

    def __init__(self, template_dir: Path | str | None = None):
        """Initialize ReportRenderer.

        Args:
            template_dir: Optional directory searched before the bundled templates
        """
        search_path = [str(BUNDLED_TEMPLATE_DIR)]
        if template_dir is not None:
            search_path.insert(0, str(template_dir))
        self.search_path = search_path

        self.env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(search_path),
            undefined=jinja2.StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._templates: dict[str, jinja2.Template] = {}
        self._lock = threading.Lock()

    def _get_template(self, template_name: str) -> jinja2.Template:
        with self._lock:
            template = self._templates.get(template_name)
            if template is not None:
                return template
            try:
                template = self.env.get_template(template_name)
            except jinja2.TemplateNotFound:
                raise TemplateNotFound(template_name) from None
            except jinja2.TemplateSyntaxError as e:
                raise TemplateRenderError(
                    template_name, f"syntax error on line {e.lineno}: {e.message}"
                ) from None
            self._templates[template_name] = template
            logger.debug(f"Loaded template {template_name}")
            return template

    def preload(self, template_names: Sequence[str]) -> None:
        """Compile templates up front so a missing one fails at startup.

        Raises:
            TemplateNotFound: If a template does not exist
            TemplateRenderError: If a template has a syntax error
        """
        for name in dict.fromkeys(template_names):
            self._get_template(name)

    def has_template(self, template_name: str) -> bool:
        try:
            self._get_template(template_name)
        except (TemplateNotFound, TemplateRenderError):
            return False
        return True

    def render(
        self,
        template_name: str,
        target: Target,
        findings: Sequence[Finding],
        scanned_at: datetime | None = None,
    ) -> str:
        """Render a report for ``findings`` of ``target``.

        Args:
            template_name: Template file name, relative to the search path
            target: Target the findings belong to
            findings: Findings to report, already ordered
            scanned_at: Scan time (default: now)

        Returns:
            Rendered message body

        Raises:
            TemplateNotFound: If the template does not exist
            TemplateRenderError: If rendering fails (e.g. an undefined variable)
        """
        template = self._get_template(template_name)
        context = build_context(target, findings, scanned_at)
        try:
            return template.render(**context).strip() + "\n"
        except jinja2.TemplateError as e:
            raise TemplateRenderError(template_name, str(e)) from None
        except (TypeError, ValueError, AttributeError) as e:
            raise TemplateRenderError(template_name, f"{type(e).__name__}: {e}") from None
