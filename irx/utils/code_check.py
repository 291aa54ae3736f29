"""Code-quality side-check — deterministic heuristics over generated code.

Runs independently of the architect's own critique. Returns critical issues
and potential problems; any critical hit forces a NEEDS_REVISION verdict.
"""

import re

# Library name as it appears in its loader URL → usage pattern in code.
KNOWN_LIBRARIES = {
    "three": re.compile(r"\bTHREE\."),
    "d3": re.compile(r"\bd3\.\w+\("),
    "chart": re.compile(r"\bnew Chart\("),
    "gsap": re.compile(r"\bgsap\."),
    "jquery": re.compile(r"\bjQuery\(|\$\(\s*(?:['\"]|document|function)"),
    "p5": re.compile(r"\bcreateCanvas\("),
}

_HTML_RE = re.compile(r"<(html|head|body)\b", re.IGNORECASE)
_DOCTYPE_RE = re.compile(r"<!DOCTYPE\s+html", re.IGNORECASE)
_SCRIPT_SRC_RE = re.compile(r"<script\b[^>]*\bsrc\s*=\s*['\"]([^'\"]+)['\"][^>]*>", re.IGNORECASE)
_JS_HINT_RE = re.compile(r"\b(function|const|let|var)\b|=>|\b(document|window)\.")
_TRY_CATCH_RE = re.compile(r"\btry\s*\{.*?\bcatch\b", re.DOTALL)


def check_code(code: str, answer_text: str = "") -> tuple[list[str], list[str]]:
    """Check generated code against the fixed heuristics.

    Returns ``(critical, potential)`` lists of issue strings. Without code
    only the ReferenceError scan of ``answer_text`` runs.
    """
    critical: list[str] = []
    potential: list[str] = []

    if "ReferenceError" in code or "ReferenceError" in answer_text:
        critical.append("Output mentions a ReferenceError: code references an undefined name.")

    if not code.strip():
        return critical, potential

    if _HTML_RE.search(code) and not _DOCTYPE_RE.search(code):
        critical.append("HTML document is missing the <!DOCTYPE html> declaration.")

    script_tags = _SCRIPT_SRC_RE.findall(code)
    sources = " ".join(src.lower() for src in script_tags)
    for library, usage in KNOWN_LIBRARIES.items():
        if usage.search(code) and library not in sources:
            critical.append(f"Code uses {library} but no <script src> loads it.")

    for match in _SCRIPT_SRC_RE.finditer(code):
        tag = match.group(0).lower()
        if "async" not in tag and "defer" not in tag:
            potential.append(f"Script {match.group(1)} is loaded without async or defer.")

    if _JS_HINT_RE.search(code) and not _TRY_CATCH_RE.search(code):
        potential.append("No try/catch error handling found in the code.")

    return critical, potential
