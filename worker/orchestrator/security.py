"""Pattern-based security scanning for suites and pipeline nodes.

Two scan types are supported on source text:
- ``sast``: risky calls and constructs (eval, shell=True, string-built SQL, ...)
- ``secrets``: credentials committed into code (tokens, keys, passwords)

Results are plain dicts so they can travel through the artifact context and be stored as JSON:
``{"summary": {...}, "vulnerabilities": [...], "policyPassed": bool, "error": str | None}``
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

SEVERITIES = ("critical", "high", "medium", "low")


@dataclass(frozen=True)
class Rule:
    id: str
    name: str
    scan_type: str
    severity: str
    pattern: re.Pattern
    description: str
    recommendation: str
    languages: Optional[tuple] = None


def _rule(id, name, scan_type, severity, pattern, description, recommendation, languages=None, flags=0):
    return Rule(id, name, scan_type, severity, re.compile(pattern, flags), description, recommendation, languages)


RULES: List[Rule] = [
    _rule("eval-usage", "Use of eval", "sast", "high", r"\beval\s*\(",
          "eval executes arbitrary code", "Parse the data instead of evaluating it"),
    _rule("exec-usage", "Use of exec", "sast", "high", r"(?<!\.)\bexec\s*\(",
          "exec executes arbitrary code", "Remove dynamic code execution", ("python",)),
    _rule("shell-true", "Subprocess with shell=True", "sast", "high", r"shell\s*=\s*True",
          "Command runs through the shell and is open to injection", "Pass an argument list without shell=True",
          ("python",)),
    _rule("sql-concat", "SQL built by string concatenation", "sast", "high",
          r"\b(SELECT|INSERT|UPDATE|DELETE)\b[^\n]*['\"]\s*\+\s*\w",
          "Query text concatenated with variables", "Use parameterized queries", flags=re.I),
    _rule("inner-html", "Assignment to innerHTML", "sast", "medium", r"\.innerHTML\s*=",
          "Unescaped HTML insertion can lead to XSS", "Use textContent or sanitize the markup",
          ("javascript", "typescript")),
    _rule("document-write", "Use of document.write", "sast", "medium", r"document\.write\s*\(",
          "document.write can inject unescaped markup", "Build DOM nodes instead",
          ("javascript", "typescript")),
    _rule("pickle-load", "Unpickling data", "sast", "medium", r"pickle\.loads?\s*\(",
          "Unpickling untrusted data executes code", "Use a data-only format such as JSON", ("python",)),
    _rule("weak-hash", "Weak hash algorithm", "sast", "low", r"\b(md5|sha1)\s*\(",
          "MD5/SHA1 are not collision resistant", "Use SHA-256 or stronger", flags=re.I),
    _rule("cleartext-http", "Cleartext HTTP URL", "sast", "low", r"http://(?!localhost|127\.0\.0\.1)[\w.-]+",
          "Traffic is sent unencrypted", "Use https://"),
    _rule("github-token", "GitHub token", "secrets", "critical", r"gh[pousr]_[A-Za-z0-9_]{20,}",
          "GitHub access token committed in code", "Revoke the token and load it from a secret store"),
    _rule("aws-access-key", "AWS access key id", "secrets", "critical", r"\bAKIA[0-9A-Z]{16}\b",
          "AWS access key committed in code", "Rotate the key and use an instance role or secret store"),
    _rule("private-key", "Private key block", "secrets", "critical",
          r"-----BEGIN (?:RSA |EC |OPENSSH |DSA )?PRIVATE KEY-----",
          "Private key material committed in code", "Remove the key and rotate it"),
    _rule("hardcoded-password", "Hardcoded credential", "secrets", "high",
          r"\b(password|passwd|secret|api[_-]?key)\s*[:=]\s*['\"][^'\"]{4,}['\"]",
          "Credential literal assigned in code", "Read credentials from the environment", flags=re.I),
]


def empty_summary() -> Dict[str, int]:
    return {"critical": 0, "high": 0, "medium": 0, "low": 0, "total": 0}


@dataclass
class SecurityPolicy:
    fail_on: str = "critical"
    max_critical: int = 0
    max_high: int = 5
    max_medium: int = 20
    max_low: int = 50

    def passes(self, summary: Dict[str, int]) -> bool:
        critical = summary.get("critical", 0)
        high = summary.get("high", 0)
        medium = summary.get("medium", 0)
        if critical > self.max_critical:
            return False
        if self.fail_on == "critical":
            return critical == 0
        if high > self.max_high:
            return False
        if self.fail_on == "high":
            return critical == 0 and high == 0
        if medium > self.max_medium:
            return False
        if self.fail_on == "medium":
            return critical == 0 and high == 0 and medium == 0
        return summary.get("low", 0) <= self.max_low


class PatternScanner:
    def __init__(self, policy: SecurityPolicy | None = None, rules: Iterable[Rule] | None = None):
        self.policy = policy or SecurityPolicy()
        self.rules = list(rules) if rules is not None else RULES

    def scan_code(self, code: str, language: str = "javascript", scan_types: Iterable[str] = ("sast", "secrets")) -> dict:
        scan_types = set(scan_types)
        findings = []
        summary = empty_summary()
        for lineno, line in enumerate((code or "").splitlines(), start=1):
            for rule in self.rules:
                if rule.scan_type not in scan_types:
                    continue
                if rule.languages and language not in rule.languages:
                    continue
                if rule.pattern.search(line):
                    findings.append({
                        "ruleId": rule.id,
                        "ruleName": rule.name,
                        "type": rule.scan_type,
                        "severity": rule.severity.upper(),
                        "line": lineno,
                        "description": rule.description,
                        "recommendation": rule.recommendation,
                    })
                    summary[rule.severity] += 1
                    summary["total"] += 1
        return {
            "summary": summary,
            "vulnerabilities": findings,
            "policyPassed": self.policy.passes(summary),
            "error": None,
        }

    def scan_infrastructure(self, target: str, scan_type: str) -> dict:
        # container/image/k8s/port scanning needs an external scanner wired in
        return {
            "summary": empty_summary(),
            "vulnerabilities": [],
            "policyPassed": False,
            "error": f"{scan_type} scanning of {target} requires an external infrastructure scanner",
        }


def gate_check(summary: Dict[str, int], max_critical: int = 0, max_high: int = 5, max_medium: int = 20):
    critical = summary.get("critical", 0) or 0
    high = summary.get("high", 0) or 0
    medium = summary.get("medium", 0) or 0
    passed = critical <= max_critical and high <= max_high and medium <= max_medium
    detail = f"C:{critical}/{max_critical}, H:{high}/{max_high}, M:{medium}/{max_medium}"
    return passed, detail


def format_report(result: dict) -> str:
    summary = result.get("summary") or empty_summary()
    lines = [
        "Security Scan Results",
        "========================",
        "",
        f"Policy Status: {'PASSED' if result.get('policyPassed') else 'FAILED'}",
        "",
        "Vulnerability Summary:",
    ]
    for sev in SEVERITIES:
        lines.append(f"  {sev.capitalize()}: {summary.get(sev, 0)}")
    lines.append(f"  Total: {summary.get('total', 0)}")
    vulns = result.get("vulnerabilities") or []
    if vulns:
        lines += ["", "Vulnerabilities Found:", "----------------------"]
        for i, v in enumerate(vulns, start=1):
            lines.append(f"{i}. [{v['severity']}] {v.get('ruleName') or v.get('type')}")
            lines.append(f"   Line {v['line']}: {v['description']}")
            if v.get("recommendation"):
                lines.append(f"   Fix: {v['recommendation']}")
    return "\n".join(lines) + "\n"
