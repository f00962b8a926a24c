"""
Model configuration and switching for study artifact generation.
Centralized price table used for cost estimates, never for billing.
"""

from typing import Dict, Any, Optional
from enum import Enum


class ModelProvider(str, Enum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GROQ = "groq"


# Model configurations
MODEL_CONFIGS: Dict[str, Dict[str, Any]] = {
    "gpt-4o": {
        "provider": ModelProvider.OPENAI,
        "model": "gpt-4o",
        "max_tokens": 4000,
        "cost_per_1k_input": 0.0025,
        "cost_per_1k_output": 0.01,
        "temperature": 0.7
    },
    "gpt-4o-mini": {
        "provider": ModelProvider.OPENAI,
        "model": "gpt-4o-mini",
        "max_tokens": 4000,
        "cost_per_1k_input": 0.00015,
        "cost_per_1k_output": 0.0006,
        "temperature": 0.7
    },
    "gpt-3.5-turbo": {
        "provider": ModelProvider.OPENAI,
        "model": "gpt-3.5-turbo-1106",
        "max_tokens": 1500,
        "cost_per_1k_input": 0.001,
        "cost_per_1k_output": 0.002,
        "temperature": 0.1
    },
    "claude-haiku-4-5": {
        "provider": ModelProvider.ANTHROPIC,
        "model": "claude-haiku-4-5-20251001",
        "max_tokens": 4000,
        "cost_per_1k_input": 0.001,
        "cost_per_1k_output": 0.005,
        "temperature": 0.7
    },
    "claude-sonnet-4-5": {
        "provider": ModelProvider.ANTHROPIC,
        "model": "claude-sonnet-4-5-20250929",
        "max_tokens": 4000,
        "cost_per_1k_input": 0.003,
        "cost_per_1k_output": 0.015,
        "temperature": 0.7
    },
    "llama-4-scout": {
        "provider": ModelProvider.GROQ,
        "model": "meta-llama/llama-4-scout-17b-16e-instruct",
        "max_tokens": 4000,
        "cost_per_1k_input": 0.00011,
        "cost_per_1k_output": 0.00034,
        "temperature": 0.7
    },
}

DEFAULT_MODEL = "gpt-4o"

# Used by the optimizer for chunk abstraction
OPTIMIZER_MODEL = "gpt-3.5-turbo"

# Typical output sizes per operation, for the savings estimate
OPERATION_OUTPUT_TOKENS = {
    "Summary Generation": 500,
    "Quiz Generation": 800,
    "Note Generation": 1200,
}


def estimate_tokens(text: str) -> int:
    """Cheap token estimate: roughly four characters per token."""
    if not text:
        return 0
    return -(-len(text) // 4)


class ModelConfig:
    """Model configuration manager"""

    @staticmethod
    def get_config(model_key: Optional[str] = None) -> Dict[str, Any]:
        """Get configuration for specified model or default"""
        key = model_key or DEFAULT_MODEL

        if key not in MODEL_CONFIGS:
            raise ValueError(f"Unknown model: {key}. Available: {list(MODEL_CONFIGS.keys())}")

        return MODEL_CONFIGS[key]

    @staticmethod
    def get_available_models() -> list:
        """List all available models"""
        return list(MODEL_CONFIGS.keys())

    @staticmethod
    def estimate_cost(model_key: str, input_tokens: int, output_tokens: int) -> float:
        """Estimate cost for a request"""
        config = ModelConfig.get_config(model_key)

        input_cost = (input_tokens / 1000) * config["cost_per_1k_input"]
        output_cost = (output_tokens / 1000) * config["cost_per_1k_output"]

        return round(input_cost + output_cost, 6)


def estimate_savings(original_length: int, optimized_length: int, model_key: str = DEFAULT_MODEL) -> Dict[str, Any]:
    """Compare typical operation costs on original vs optimized text."""
    original_tokens = -(-original_length // 4)
    optimized_tokens = -(-optimized_length // 4)

    per_operation = []
    for operation, output_tokens in OPERATION_OUTPUT_TOKENS.items():
        original_cost = ModelConfig.estimate_cost(model_key, original_tokens, output_tokens)
        optimized_cost = ModelConfig.estimate_cost(model_key, optimized_tokens, output_tokens)
        savings = round(original_cost - optimized_cost, 6)
        percentage = round(savings / original_cost * 100, 1) if original_cost > 0 else 0.0
        per_operation.append({
            "operation": operation,
            "original_cost": original_cost,
            "optimized_cost": optimized_cost,
            "savings": savings,
            "savings_percentage": percentage,
        })

    return {
        "per_operation": per_operation,
        "total_potential_savings": round(sum(item["savings"] for item in per_operation), 6),
    }
