"""LLM providers.

Provider modules are imported lazily by the model registry (`openai/*`,
`openrouter/*`) so importing somni does not require provider SDK setup.
"""
