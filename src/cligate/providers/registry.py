"""Built-in provider records.

Each provider CLI is described by data only; the Gateway has a single code
path for all of them. Config files can override or extend these records
(see `cligate.config`).
"""

from __future__ import annotations

import tempfile

from .base import OptionSpec, ProviderDescriptor

CODE_TIMEOUT_S = 300.0
CHAT_TIMEOUT_S = 120.0

CODEX = ProviderDescriptor(
    name="codex",
    executable="codex",
    timeout_s=CODE_TIMEOUT_S,
    model_flag="-m",
    pre_prompt_args=("exec",),
    end_of_options=True,
    options=(
        OptionSpec("sandbox", ("--sandbox",)),
        OptionSpec("approval_policy", ("--ask-for-approval",)),
    ),
    auth_cues=(("please run", "codex login"),),
    login_hint="codex login",
    install_hint="npm install -g @openai/codex",
)

GEMINI = ProviderDescriptor(
    name="gemini",
    executable="gemini",
    timeout_s=CHAT_TIMEOUT_S,
    end_of_options=True,
    options=(
        OptionSpec("approval_mode", ("--approval-mode",)),
        # gemini rejects --yolo together with --approval-mode
        OptionSpec("yolo", ("--approval-mode", "yolo"), takes_value=False, unless="approval_mode"),
    ),
    auth_cues=(("please run", "gemini login"),),
    login_hint="gemini",
    install_hint="npm install -g @google/gemini-cli",
)

QWEN = ProviderDescriptor(
    name="qwen",
    executable="qwen",
    timeout_s=CHAT_TIMEOUT_S,
    end_of_options=True,
    options=(
        OptionSpec("approval_mode", ("--approval-mode",)),
        OptionSpec("yolo", ("--approval-mode", "yolo"), takes_value=False, unless="approval_mode"),
    ),
    auth_cues=("api key", "invalid key", "dashscope"),
    rate_limit_cues=("billing",),
    login_hint="qwen",
    install_hint="npm install -g @qwen-code/qwen-code",
)

KIMI = ProviderDescriptor(
    name="kimi",
    executable="kimi",
    timeout_s=CHAT_TIMEOUT_S,
    model_flag="-m",
    prompt_flag="-c",
    pre_prompt_args=("-w", tempfile.gettempdir()),
    post_prompt_args=("--print", "--output-format", "text"),
    options=(OptionSpec("yolo", ("--yolo",), takes_value=False, default=True),),
    auth_cues=("llm not set", "401"),
    rate_limit_cues=("429",),
    login_hint="kimi, then /setup",
    install_hint="uv tool install --python 3.13 kimi-cli",
    output_filter="text_parts",
    diagnose_stdout=True,
    models={
        "kimi-latest": "Kimi Latest (128K context)",
        "kimi-thinking": "Kimi with extended reasoning (128K context)",
    },
)

CLAUDE = ProviderDescriptor(
    name="claude",
    executable="claude",
    timeout_s=CODE_TIMEOUT_S,
    prompt_flag="-p",
    login_hint="claude /login",
    install_hint="npm install -g @anthropic-ai/claude-code",
)

COPILOT = ProviderDescriptor(
    name="copilot",
    executable="copilot",
    timeout_s=CODE_TIMEOUT_S,
    default_model="gpt-5",
    prompt_flag="-p",
    pre_prompt_args=("--stream", "off"),
    post_prompt_args=("--no-color", "--no-custom-instructions"),
    options=(
        OptionSpec("allow_all_tools", ("--allow-all-tools",), takes_value=False),
        OptionSpec("allow_all_paths", ("--allow-all-paths",), takes_value=False),
    ),
    login_hint="copilot /login",
    install_hint="npm install -g @github/copilot",
)

BUILTIN_PROVIDERS: dict[str, ProviderDescriptor] = {
    p.name: p for p in (CODEX, GEMINI, QWEN, KIMI, CLAUDE, COPILOT)
}
