"""
Voice Conversation - Language Model Module
==========================================

Step 3: Generate the companion's replies with a local LLM (llama.cpp).

The reply is steered by the current assessment focus: each focus has its own
system prompt, and the last user message gets a one-line task appended
("Ask about their day ...").

Supported Models (GGUF format):
- Llama-3.2-1B-Instruct-Q4_K_M     (~0.8GB)  - Fast, basic quality
- Llama-3.2-3B-Instruct-Q4_K_M     (~2.0GB)  - Good balance
- Qwen2.5-3B-Instruct-Q4_K_M       (~2.0GB)  - Good for conversation

Download:
    python -c "from core.llm import download_model; download_model('llama-3.2-3b')"

Place downloaded files in: models/llm/
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence
from pathlib import Path
import os
import re
import threading
import time

from core.errors import GenerationError
from core.prompts import (
    BASE_SYSTEM_PROMPT,
    FOCUS_PROMPTS,
    system_prompt_for,
    GREETING_PROMPT,
    turn_instruction,
)

# Import llama-cpp-python
try:
    from llama_cpp import Llama
    HAS_LLAMA_CPP = True
except ImportError:
    HAS_LLAMA_CPP = False
    print("[LLM] Warning: llama-cpp-python not installed")


class ResponseGenerator(Protocol):
    def generate(self, history: Sequence[Dict[str, str]], focus: str) -> str: ...


@dataclass
class LLMConfig:
    """Configuration for LLM inference."""
    model_path: str = ""            # Path to GGUF model file
    n_ctx: int = 2048               # Context window size
    n_threads: int = 4              # CPU threads for inference
    n_gpu_layers: int = 0           # GPU layers (0 = CPU only)
    max_tokens: int = 120           # Short replies for voice
    temperature: float = 0.5        # Lower for better instruction-following
    top_p: float = 0.9
    top_k: int = 40
    repeat_penalty: float = 1.1
    max_history_turns: int = 6      # User+AI pairs kept in the prompt
    chat_format: Optional[str] = None  # None = detect from file name
    verbose: bool = False           # Show llama.cpp logs


# Special tokens that may leak into the completion text
_LEAKED_TOKENS = [
    r'<\|im_end\|>',
    r'<\|im_start\|>',
    r'<\|endoftext\|>',
    r'<\|eot_id\|>',
    r'<\|end_of_text\|>',
    r'<\|start_header_id\|>',
    r'<\|end_header_id\|>',
    r'<\|begin_of_text\|>',
    r'</s>',
    r'\[/INST\]',
    r'<end_of_turn>',
    r'<eos>',
    r'(system|user|assistant)\|end_header_id\|>',
]


def detect_chat_format(model_name: str) -> str:
    """Guess the llama.cpp chat format from a GGUF file name."""
    name = model_name.lower()
    if "qwen" in name:
        return "chatml"
    if "llama-3" in name or "llama3" in name:
        return "llama-3"
    if "mistral" in name:
        return "mistral-instruct"
    return "chatml"


def stop_tokens_for(chat_format: str) -> List[str]:
    """Stop sequences for a chat format."""
    if chat_format == "chatml":
        return ["<|im_end|>", "<|endoftext|>", "<|im_start|>"]
    if chat_format == "llama-3":
        return ["<|eot_id|>", "<|end_of_text|>"]
    if chat_format == "mistral-instruct":
        return ["</s>", "[/INST]"]
    return ["<|eot_id|>", "<|end|>", "</s>", "<|im_end|>"]


def clean_response(text: str) -> str:
    """Remove leaked special tokens and a leading speaker label."""
    for pattern in _LEAKED_TOKENS:
        text = re.sub(pattern, '', text, flags=re.IGNORECASE)
    text = re.sub(r'^\s*(AI|Assistant)\s*:\s*', '', text, flags=re.IGNORECASE)
    text = text.strip().strip('"').strip()
    return re.sub(r'\n{3,}', '\n\n', text)


class LlamaResponder:
    """
    Focus-aware reply generator on top of llama-cpp-python.

    Usage:
        llm = LlamaResponder(LLMConfig(model_path="models/llm/Llama-3.2-3B-Instruct-Q4_K_M.gguf"))

        history = [
            {"speaker": "ai", "text": "Good morning! How are you feeling?"},
            {"speaker": "user", "text": "Quite well, I went for a walk."},
        ]
        reply = llm.generate(history, "memory")
        greeting = llm.generate_greeting("morning")

    Both methods raise GenerationError instead of returning canned text,
    so the caller decides on the fallback.
    """

    def __init__(self, config: Optional[LLMConfig] = None):
        if not HAS_LLAMA_CPP:
            raise ImportError(
                "llama-cpp-python not installed. "
                "Run: pip install llama-cpp-python"
            )

        self.config = config or LLMConfig()

        if not self.config.model_path:
            raise ValueError(
                "model_path is required. Download a model first:\n"
                "  python -c \"from core.llm import download_model; download_model('llama-3.2-3b')\""
            )

        model_path = Path(self.config.model_path)
        if not model_path.exists():
            raise FileNotFoundError(
                f"Model not found: {model_path}\n"
                f"Download a GGUF model and place it in the models/llm/ directory."
            )

        self._chat_format = self.config.chat_format or detect_chat_format(model_path.name)

        print(f"[LLM] Loading model: {model_path.name}")
        print(f"      Context: {self.config.n_ctx}, Threads: {self.config.n_threads}, "
              f"Chat format: {self._chat_format}")

        load_start = time.time()
        self._model = Llama(
            model_path=str(model_path),
            n_ctx=self.config.n_ctx,
            n_threads=self.config.n_threads,
            n_gpu_layers=self.config.n_gpu_layers,
            verbose=self.config.verbose,
            chat_format=self._chat_format,
        )
        print(f"[LLM] Model loaded in {time.time() - load_start:.1f}s")

        self._lock = threading.Lock()  # llama.cpp contexts are not thread-safe
        self._stats = self._empty_stats()

    @staticmethod
    def _empty_stats() -> Dict:
        return {
            "generations": 0,
            "failures": 0,
            "total_tokens": 0,
            "total_time": 0.0,
        }

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------
    def generate(self, history: Sequence[Dict[str, str]], focus: str) -> str:
        """
        Generate the next companion reply.

        Args:
            history: Turns so far, [{"speaker": "user"|"ai", "text": "..."}]
            focus: Assessment focus ("general", "memory", "language", "executive")

        Returns:
            Non-empty reply text
        """
        focus_key = getattr(focus, "value", focus)
        if focus_key not in FOCUS_PROMPTS:
            self._stats["failures"] += 1
            raise GenerationError(f"Unknown assessment focus: {focus!r}")

        messages = self._build_messages(history, focus_key)
        return self._complete(messages)

    def generate_greeting(self, time_of_day: str) -> str:
        """Opening line for a new conversation."""
        messages = [
            {"role": "system", "content": BASE_SYSTEM_PROMPT},
            {"role": "user", "content": GREETING_PROMPT.format(time_of_day=time_of_day)},
        ]
        return self._complete(messages)

    def _complete(self, messages: List[Dict]) -> str:
        with self._lock:
            start_time = time.time()
            try:
                response = self._model.create_chat_completion(
                    messages=messages,
                    max_tokens=self.config.max_tokens,
                    temperature=self.config.temperature,
                    top_p=self.config.top_p,
                    top_k=self.config.top_k,
                    repeat_penalty=self.config.repeat_penalty,
                    stop=stop_tokens_for(self._chat_format),
                )
                content = response["choices"][0]["message"]["content"] or ""
            except Exception as e:
                self._stats["failures"] += 1
                raise GenerationError(f"Generation failed: {e}") from e

        content = clean_response(content)
        if not content:
            self._stats["failures"] += 1
            raise GenerationError("Model returned an empty reply")

        self._stats["generations"] += 1
        self._stats["total_tokens"] += response.get("usage", {}).get("completion_tokens", 0)
        self._stats["total_time"] += time.time() - start_time
        return content

    def _build_messages(self, history: Sequence[Dict[str, str]], focus: str) -> List[Dict]:
        """System prompt for the focus, trimmed history, task on the last user message."""
        messages = [{"role": "system", "content": system_prompt_for(focus)}]

        for turn in self._trim_history(history):
            role = "user" if turn["speaker"] == "user" else "assistant"
            messages.append({"role": role, "content": turn["text"]})

        instruction = turn_instruction(focus)
        if len(messages) > 1 and messages[-1]["role"] == "user":
            messages[-1] = {
                "role": "user",
                "content": f"{messages[-1]['content']}\n\n({instruction})",
            }
        else:
            messages.append({"role": "user", "content": instruction})

        return messages

    def _trim_history(self, history: Sequence[Dict[str, str]]) -> List[Dict[str, str]]:
        """Keep the most recent max_history_turns exchanges."""
        max_messages = self.config.max_history_turns * 2
        history = list(history)
        if len(history) <= max_messages:
            return history
        return history[-max_messages:]

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------
    def get_stats(self) -> Dict:
        """Get generation statistics."""
        total_time = self._stats["total_time"]
        total_tokens = self._stats["total_tokens"]
        return {
            **self._stats,
            "tokens_per_second": total_tokens / total_time if total_time > 0 else 0,
        }

    def reset_stats(self) -> None:
        """Reset statistics counters."""
        self._stats = self._empty_stats()


MODELS = {
    "llama-3.2-1b": {
        "repo": "bartowski/Llama-3.2-1B-Instruct-GGUF",
        "file": "Llama-3.2-1B-Instruct-Q4_K_M.gguf",
    },
    "llama-3.2-3b": {
        "repo": "bartowski/Llama-3.2-3B-Instruct-GGUF",
        "file": "Llama-3.2-3B-Instruct-Q4_K_M.gguf",
    },
    "qwen-3b": {
        "repo": "Qwen/Qwen2.5-3B-Instruct-GGUF",
        "file": "qwen2.5-3b-instruct-q4_k_m.gguf",
    },
}


def download_model(model_name: str = "llama-3.2-3b", output_dir: str = "models/llm") -> str:
    """
    Download a GGUF model from Hugging Face.

    Args:
        model_name: One of the keys of MODELS
        output_dir: Directory to save the model

    Returns:
        Path to downloaded model file
    """
    if model_name not in MODELS:
        available = ", ".join(MODELS.keys())
        raise ValueError(f"Unknown model: {model_name}. Available: {available}")

    try:
        from huggingface_hub import hf_hub_download
    except ImportError:
        raise ImportError("Install huggingface-hub: pip install huggingface-hub")

    model_info = MODELS[model_name]
    os.makedirs(output_dir, exist_ok=True)

    print(f"[LLM] Downloading {model_name} ({model_info['repo']})...")
    path = hf_hub_download(
        repo_id=model_info["repo"],
        filename=model_info["file"],
        local_dir=output_dir,
    )
    print(f"[LLM] Saved to: {path}")
    return path
