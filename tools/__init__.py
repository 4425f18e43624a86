from tools.professionals import Professional, ProfessionalDirectory, create_default_tool_registry
