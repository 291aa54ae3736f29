"""System instructions for the reasoner phases and the architect.

Expert personas extend the solution-phase instruction with a role,
guidelines and a response format matched to the kind of question.
"""

import re

THINKING_PROMPT = """\
You are in THINKING mode. Analyze the conversation and determine if architect assistance is needed.
The complete conversation history is provided below.
Format your response with these sections:
1. Original Question: [Extract and state the original question]
2. Current Status: [Describe where we are in solving it]
3. Issues Found: [List any problems or challenges]
4. Architect Needed?: [Yes/No and why]"""

SOLUTION_PROMPT = """\
You are in SOLUTION mode. Review the complete conversation history below.
If you cannot solve the problem, explicitly state why and recommend architect escalation.
Format your response clearly with:
1. Understanding: [Show you understand the question]
2. Approach: [Explain your solution approach]
3. Solution: [Provide the solution or explain why escalation is needed]"""

COMMON_GUIDELINES = [
    "Be precise and accurate",
    "Use clear language",
    "Stay focused on the query",
]

EXPERT_PROMPTS = {
    "CODE": {
        "role": "Senior Software Engineer",
        "context": "You are implementing a technical solution",
        "guidelines": COMMON_GUIDELINES + [
            "Follow best practices and design patterns",
            "Consider performance, security, and maintainability",
            "Include error handling and edge cases",
            "Provide clear documentation",
        ],
        "response_format": (
            "**Implementation Details:**\n"
            '```json\n{"solution": {"changes": [], "validation": "", "remaining_tasks": []}}\n```'
        ),
    },
    "EXPLANATION": {
        "role": "Technical Educator",
        "context": "You are explaining a complex concept",
        "guidelines": COMMON_GUIDELINES + [
            "Break down complex ideas into simpler parts",
            "Use analogies when helpful",
            "Provide real-world examples",
            "Address common misconceptions",
        ],
        "response_format": "**Explanation:**\n1. Key Concepts\n2. Detailed Analysis\n3. Examples\n4. Implications",
    },
    "RESEARCH": {
        "role": "Research Analyst",
        "context": "You are analyzing current research and data",
        "guidelines": COMMON_GUIDELINES + [
            "Cite reliable sources when possible",
            "Distinguish between facts and theories",
            "Consider multiple perspectives",
            "Acknowledge uncertainties",
        ],
        "response_format": (
            "**Research Analysis:**\n1. Current Understanding\n2. Key Findings\n3. Uncertainties\n4. Future Directions"
        ),
    },
}

_CODE_RE = re.compile(
    r"\b(code|function|class|script|html|css|javascript|python|typescript|api|bug|compile|implement)\b|```",
    re.IGNORECASE,
)
_RESEARCH_RE = re.compile(
    r"\b(research|study|studies|paper|evidence|statistics|data shows|latest|sources?|survey)\b",
    re.IGNORECASE,
)


def classify_query(question: str) -> str:
    """Return CODE, RESEARCH or EXPLANATION for a question."""
    if _CODE_RE.search(question or ""):
        return "CODE"
    if _RESEARCH_RE.search(question or ""):
        return "RESEARCH"
    return "EXPLANATION"


def expert_guidance(question: str) -> str:
    """Return the persona block for the question, or "" when personas are disabled."""
    from irx.config import get_config

    if not get_config().get("expert_prompts_enabled", False):
        return ""

    persona = EXPERT_PROMPTS[classify_query(question)]
    guidelines = "\n".join(f"- {g}" for g in persona["guidelines"])
    return (
        f"\n\n## Role\n{persona['role']}. {persona['context']}.\n\n"
        f"## Guidelines\n{guidelines}\n\n"
        f"## Response Format\n{persona['response_format']}"
    )


def solution_prompt(question: str) -> str:
    return SOLUTION_PROMPT + expert_guidance(question)


REVIEW_INSTRUCTIONS = """\
You are a CRITICAL CODE REVIEWER analyzing a conversation and solution. Your task:

CONTEXT:
{transcript}

REVIEW INSTRUCTIONS:
1. Analyze the conversation flow, solution quality, and technical accuracy
2. Identify any issues with code examples, mathematical explanations, or technical concepts
3. Suggest specific improvements with examples
4. If there are no critical issues, explain why the solution is good
{mode_instructions}
YOUR RESPONSE MUST:
1. Be a valid JSON object (no markdown, no code blocks)
2. Include at least one item in each array
3. Use "NEEDS_REVISION" verdict if ANY critical issues exist
4. Use "APPROVED" verdict ONLY if NO critical issues exist

RESPONSE FORMAT:
{{
  "criticalIssues": ["At least one critical issue or 'No critical issues found: [reason]'"],
  "potentialProblems": ["At least one potential problem or 'No significant problems found: [reason]'"],
  "improvements": ["At least one suggested improvement"],
  "verdict": "NEEDS_REVISION" or "APPROVED"{solution_field}
}}"""

SOLVE_MODE_INSTRUCTIONS = """
The primary engineer could not finish this question. You MUST also solve it yourself:
5. Put your complete solution in the "solution" field. Always produce a solution, even a partial one.
"""


def review_prompt(transcript: str, mode: str) -> str:
    solving = mode == "solve"
    return REVIEW_INSTRUCTIONS.format(
        transcript=transcript,
        mode_instructions=SOLVE_MODE_INSTRUCTIONS if solving else "",
        solution_field=',\n  "solution": "Your complete solution"' if solving else "",
    )


def revision_prompt(original_question: str, prior_solution: str, improvements: list[str]) -> str:
    """Build the prompt that sends a solution back to the engineer."""
    if improvements:
        bullets = "\n".join(f"- {item}" for item in improvements)
    else:
        bullets = "- (no specific improvements were requested; re-check the solution for correctness)"
    return (
        "REVISION REQUEST\n\n"
        f"Original question:\n{original_question or 'No original question found'}\n\n"
        f"Previous solution:\n{prior_solution or 'No previous solution found'}\n\n"
        f"Requested improvements:\n{bullets}\n\n"
        "Address EVERY improvement listed above and provide a complete revised solution, "
        "not just the changes."
    )
