"""
Text and tool templates used by guideline actions.

  render / render_object — fill {{slot}} placeholders from facts
  ToolRegistry           — name → async handler catalog, per-turn tool map
"""
from templates.renderer import render, render_object
from templates.tool_registry import ToolRegistry, ToolSchema, ToolNotFoundError
