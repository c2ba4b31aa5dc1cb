"""
Story Chain - Constants

Enums, pricing, and the static model catalogue used throughout the pipeline.
"""

from enum import Enum


class SystemPromptMode(str, Enum):
    """How a caller-supplied system prompt combines with the style guide."""

    DEFAULT = "default"
    REPLACE = "replace"
    APPEND = "append"


class RunStage(str, Enum):
    """Discrete status updates emitted by a pipeline run."""

    STARTED = "started"
    SCRIPTS_READY = "scripts_ready"
    SCRIPTS_OPTIMIZED = "scripts_optimized"
    SCENE_GENERATING = "scene_generating"
    SCENE_COMPLETE = "scene_complete"
    CONCATENATING = "concatenating"
    CONCATENATION_COMPLETE = "concatenation_complete"
    COMPLETE = "complete"
    FAILED = "failed"


# Stages after which no further events are emitted for a run
TERMINAL_STAGES = frozenset({RunStage.COMPLETE, RunStage.FAILED})

# Finished runs kept in memory for status queries and late subscribers
MAX_FINISHED_RUNS = 100


# ============================================================================
# Scenes
# ============================================================================

SCENE_COUNT = 3
SCENE_DURATION_SEC = 8
VIDEO_ASPECT_RATIO = "16:9"

DURATION_MARKER = f"Duration: {SCENE_DURATION_SEC} seconds."
CONTINUOUS_ACTION_MARKER = (
    "Continuous action throughout the shot with uninterrupted ambient audio."
)

IMAGE_PROMPT_ORIGINAL = "[Generated from image]"


# ============================================================================
# Pricing
# ============================================================================

# Single pricing policy: billed per generated second
COST_PER_SECOND_USD = 0.50
COST_PER_VIDEO_USD = COST_PER_SECOND_USD * SCENE_DURATION_SEC
COST_CURRENCY = "USD"
COST_WARNING = "This is a real cost that will be charged to your fal.ai account"


# ============================================================================
# Prompt Optimization
# ============================================================================

DEFAULT_OPTIMIZER_MODEL = "anthropic/claude-3.5-sonnet"
OPTIMIZE_DELAY_SEC = 1.0
HISTORY_LIMIT = 20

# (id, name, description, supports_vision)
OPENROUTER_MODELS: list[tuple[str, str, str, bool]] = [
    # Vision-capable models
    ("anthropic/claude-3.5-sonnet", "Claude 3.5 Sonnet", "Best for creative writing and analysis (Vision)", True),
    ("anthropic/claude-3.5-haiku", "Claude 3.5 Haiku", "Fast and efficient with vision capabilities", True),
    ("openai/gpt-4o", "GPT-4o", "Latest OpenAI model with vision (Vision)", True),
    ("openai/gpt-4o-mini", "GPT-4o Mini", "Compact vision model, fast and cost-effective", True),
    ("openai/gpt-4-turbo", "GPT-4 Turbo", "Powerful and versatile with vision (Vision)", True),
    ("google/gemini-pro-1.5", "Gemini Pro 1.5", "Google's advanced model with vision (Vision)", True),
    ("google/gemini-flash-1.5", "Gemini Flash 1.5", "Fast multimodal model with vision capabilities", True),
    ("google/gemini-flash-1.5-8b", "Gemini Flash 1.5 8B", "Efficient vision model for quick processing", True),
    ("google/gemini-2.5-flash-lite", "Gemini 2.5 Flash Lite", "Lightweight Gemini model with vision capabilities", True),
    ("x-ai/grok-4", "Grok 4", "X.AI's multimodal model with vision capabilities", True),
    ("meta-llama/llama-3.2-90b-vision-instruct", "Llama 3.2 90B Vision", "Open source vision model", True),
    ("meta-llama/llama-3.2-11b-vision-instruct", "Llama 3.2 11B Vision", "Compact open source vision model", True),
    ("qwen/qwen-2-vl-72b-instruct", "Qwen2-VL 72B", "Advanced vision-language model", True),
    ("qwen/qwen-2-vl-7b-instruct", "Qwen2-VL 7B", "Efficient vision-language model", True),
    # Text-only models
    ("anthropic/claude-3-haiku", "Claude 3 Haiku", "Fast and efficient (Text only)", False),
    ("meta-llama/llama-3.1-70b-instruct", "Llama 3.1 70B", "Open source powerhouse (Text only)", False),
    ("mistralai/mixtral-8x7b-instruct", "Mixtral 8x7B", "Efficient mixture of experts (Text only)", False),
    ("perplexity/llama-3.1-sonar-large-128k-online", "Perplexity Sonar Large", "With web search capabilities (Text only)", False),
]


# ============================================================================
# Script Generation
# ============================================================================

# Keyword -> environment, first match wins
ENVIRONMENT_KEYWORDS: list[tuple[tuple[str, ...], str]] = [
    (("space", "planet", "galaxy", "alien"), "futuristic space station"),
    (("forest", "woods", "jungle"), "enchanted forest"),
    (("ocean", "sea", "beach", "island"), "sunlit ocean shoreline"),
    (("castle", "medieval", "kingdom"), "ancient stone castle"),
    (("kitchen", "cook", "bake", "recipe"), "busy restaurant kitchen"),
    (("technology", "modern", "computer", "office", "robot"), "sleek modern technology lab"),
    (("city", "street", "town"), "bustling modern city street"),
]
DEFAULT_ENVIRONMENT = "cinematic open landscape"

# Words the script writer must avoid; video models tend to render them literally
BANNED_NEGATIONS = ["no", "not", "don't", "without", "never"]


# ============================================================================
# Encoding
# ============================================================================

VIDEO_CODEC = "libx264"
AUDIO_CODEC = "aac"
ENCODER_PRESET = "fast"
CRF = 23  # Quality (lower = better, 18-28 typical)
