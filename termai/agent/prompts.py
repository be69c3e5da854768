"""System prompt and the context messages the auto-run loop writes."""

from termai.agent.state import MAX_AUTO_STEPS, StuckVerdict
from termai.agent.summary import looks_like_app_started
from termai.tools.safety import RuleBasedImpactClassifier

ROLE = "Expert terminal AI assistant integrated into an intelligent command-line environment"

PERSONALITY = [
    "Precise and efficient",
    "Safety-conscious",
    "Adaptively verbose based on user skill level",
]

CAPABILITIES = [
    "Comprehensive knowledge of macOS, Windows, and Linux operating systems",
    "Deep understanding of shells, commands, utilities, and best practices",
    "Context-aware command generation and error resolution",
]

TOOLS = [
    ("[READ_FILE: <path>]", "Reads the content of a file."),
    (
        "[WRITE_FILE: <path>]\n```\n<content>\n```",
        "Writes content to a file. You MUST provide the content in a code block "
        "immediately following the tag.",
    ),
    ("[LIST_FILES: <path>]", "Lists files and directories in the specified path."),
    ("[MKDIR: <path>]", "Creates a new directory (recursive)."),
]

STALL_NOTICE = (
    "Auto-Run Stalled: No command found. Please explain why you stopped or ask for input."
)
BUDGET_NOTICE = f"Auto-Run limit reached ({MAX_AUTO_STEPS} steps). Stopping for safety."
PROVIDER_FAILURE_MESSAGE = "Error in auto-run loop."
SAFETY_CANCELLED_MESSAGE = "Command cancelled by user safety check."
RESPONSE_LOOP_REASON = "Repeating the same response"

APP_STARTED_HINT = (
    "**APPLICATION STARTED SUCCESSFULLY** - The output shows the application is running "
    "and displaying a UI/menu. If this was the user's goal (to run/start the app), you "
    'should output your Mission Report and say "Task Complete". Do NOT run additional '
    "commands unless the user asked for something beyond just starting the app."
)

RECOVERY_PROTOCOL = """**AUTO-RECOVERY PROTOCOL:**
1. Analyze why this command failed
2. Check if prerequisites are missing
3. If this is a recurring error, use [ASK_USER] to request help
4. Propose a DIFFERENT approach - do NOT repeat similar failed commands"""


def build_system_prompt(cwd: str, auto_run: bool, os_name: str) -> str:
    """
    Build the system prompt for one LLM turn.

    Args:
        cwd: Working directory of the session shell
        auto_run: Whether the autonomous protocol applies
        os_name: Operating system name shown to the model

    Returns:
        The system prompt text
    """
    safety = "\n".join(
        f"- {rule.risk.value}: {rule.description}"
        for rule in RuleBasedImpactClassifier.SAFETY_RULES
    )
    tools = "\n".join(f"- {syntax}\n  {description}" for syntax, description in TOOLS)

    prompt = f"""Role: {ROLE}
Personality: {", ".join(PERSONALITY)}
Capabilities: {", ".join(CAPABILITIES)}

Current Context:
- Operating System: {os_name}
- Working Directory: {cwd}

File Tools:
{tools}

Safety Constraints (these commands require user confirmation):
{safety}

Operational Rules:
1. You have access to the full conversation history, including "System Output" which contains the results of previous commands.
2. ALWAYS check the "System Output" to answer questions about files, errors, or command results.
3. If the user asks to run a command, provide the command in a code block like ```bash\ncommand\n```.
4. Keep answers concise and helpful.
5. To open a new terminal tab, output [NEW_TAB].
6. If a command is taking too long, you can output [CANCEL] to stop it.
7. Output ONLY ONE command at a time unless absolutely necessary.
"""

    if auto_run:
        prompt += """
AUTO-RUN MODE ACTIVE:
1. Analyze the user's request and the previous command's output.
2. Create or update your mental plan: Install -> Build -> Start -> Verify.
3. Output the NEXT command to run in a code block.
4. If the task is complete, write a short "Mission Report:" and then output "Task Complete".
5. If you encounter an error, do NOT repeat the same command.
6. BACKTRACKING PROTOCOL: If a command fails (Exit Code != 0), explicitly state: "Step [X] failed. Backtracking to Step [Y]." Then propose an alternative approach.
7. If stuck, output [WAIT] or [ASK_USER] and ask the user for clarification.
"""
    else:
        prompt += """
INTERACTIVE MODE:
1. Guide the user through the task.
2. Explain complex commands before suggesting them.
3. If an error occurs, analyze the "System Output" and suggest a fix.
"""

    return prompt


def format_output_message(
    command: str,
    output: str,
    exit_code: int,
    auto_run: bool,
    max_chars: int = 1000,
    error_type: str | None = None,
) -> str:
    """
    Format a finished command for the conversation context.

    Args:
        command: The command that ran
        output: Its output
        exit_code: Its exit code
        auto_run: Whether the loop is autonomous (adds recovery guidance)
        max_chars: Output excerpt length
        error_type: Classified error category, if any

    Returns:
        The system message text
    """
    excerpt = output[:max_chars] + ("..." if len(output) > max_chars else "")
    message = f"> Executed: `{command}` (Exit: {exit_code})\n\nOutput:\n```\n{excerpt}\n```"

    if auto_run and exit_code != 0:
        message += f"\n\n**Command Failed (Exit Code: {exit_code})**\n\n"
        if error_type:
            message += f"**Error Type:** {error_type}\n\n"
        message += RECOVERY_PROTOCOL
    elif auto_run and looks_like_app_started(output):
        message += f"\n\n{APP_STARTED_HINT}"

    return message


def format_stuck_message(verdict: StuckVerdict) -> str:
    """Ask the user for help after a stuck verdict."""
    failed = "\n".join(f"- `{command}`" for command in verdict.failed_commands)
    solutions = "\n".join(f"{i}. {s}" for i, s in enumerate(verdict.suggestions, start=1))
    return f"""**I Need Your Help**

I've been trying to complete this task but I'm running into repeated issues.

**Problem:** {verdict.reason}

**Failed Commands:**
{failed or "- (none)"}

**Possible Solutions:**
{solutions}

**Please help me by:**
- Telling me which approach to try
- Providing additional context about your setup
- Or manually running a command to fix the issue

Once you respond, I'll continue with your guidance."""
