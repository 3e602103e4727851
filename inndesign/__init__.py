"""Interior design image generation: prompts, providers, spend limits and orchestration."""
