"""
Model wrapper for Transformers causal language models.

Handles model loading and single-step inference for local completions.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import torch
import torch.nn.functional as F
from transformers import AutoModelForCausalLM, AutoTokenizer

logger = logging.getLogger(__name__)


def detect_device() -> str:
    if torch.backends.mps.is_available():
        return "mps"
    if torch.cuda.is_available():
        return "cuda"
    return "cpu"


class ModelWrapper:
    """
    Wrapper for Hugging Face causal LMs.

    Prompts are continued as raw text: weave content is a document, not a
    chat turn, so no chat template is applied unless asked for.
    """

    def __init__(
        self,
        model_name: str,
        device: Optional[str] = None,
        dtype: Optional[torch.dtype] = None,
    ):
        """
        Args:
            model_name: HuggingFace model name or local path
            device: Device to use (auto-detected if None)
            dtype: Data type for weights (float16 on accelerators, else float32)
        """
        self.model_name = model_name
        self.device = device or detect_device()

        if dtype is None:
            dtype = torch.float16 if self.device in ("mps", "cuda") else torch.float32
        self.dtype = dtype

        logger.info(f"Loading model {model_name} on {self.device}")
        self.tokenizer = AutoTokenizer.from_pretrained(model_name)
        self.model = AutoModelForCausalLM.from_pretrained(
            model_name,
            dtype=dtype,
            device_map=self.device,
        )
        self.model.eval()
        logger.info(f"Model loaded: {model_name}")

    def tokenize_prompt(
        self, prompt: str, use_chat_template: bool = False
    ) -> torch.Tensor:
        """
        Tokenize a prompt.

        An empty prompt starts from the BOS token when the tokenizer has one.

        Returns:
            Token IDs tensor of shape (1, n) on the model device
        """
        if use_chat_template and self.tokenizer.chat_template is not None:
            input_ids = self.tokenizer.apply_chat_template(
                [{"role": "user", "content": prompt}],
                tokenize=True,
                add_generation_prompt=True,
                return_tensors="pt",
            )
        elif not prompt and self.tokenizer.bos_token_id is not None:
            input_ids = torch.tensor([[self.tokenizer.bos_token_id]])
        else:
            input_ids = self.tokenizer.encode(prompt, return_tensors="pt")

        return input_ids.to(self.device)

    def get_next_token_logits(
        self, input_ids: torch.Tensor, past_key_values: Optional[Tuple] = None
    ) -> Tuple[torch.Tensor, Tuple]:
        """
        Logits for the next token, reusing the KV cache when given.

        Returns:
            Tuple of (next_token_logits, past_key_values)
        """
        with torch.no_grad():
            if past_key_values is None:
                out = self.model(input_ids=input_ids, use_cache=True)
            else:
                # Only the newest token needs a forward pass
                out = self.model(
                    input_ids=input_ids[:, -1:],
                    past_key_values=past_key_values,
                    use_cache=True,
                )

        return out.logits[:, -1, :], out.past_key_values

    def decode_token(self, token_id: int) -> str:
        return self.tokenizer.decode([token_id], skip_special_tokens=False)

    def compute_distribution(
        self, logits: torch.Tensor, temperature: float = 1.0
    ) -> torch.Tensor:
        """Softmax over logits scaled by temperature."""
        if temperature != 1.0:
            logits = logits / temperature
        return F.softmax(logits.float(), dim=-1)

    @property
    def eos_token_id(self) -> Optional[int]:
        return self.tokenizer.eos_token_id
