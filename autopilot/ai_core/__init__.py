# AI Core module

"""
AI Core Module - plans repository modifications.

Key responsibilities:
- Reasoning oracle access (SAP GenAI SDK proxy + langchain)
- Repository context assembly
- Strict plan contract validation
- Meaningfulness gate for unattended runs
"""
