"""
JSON schemas for configuration validation.
"""

PROVIDER_SCHEMA = {
    "type": "object",
    "properties": {
        "api_key": {"type": ["string", "null"]},
        "base_url": {"type": ["string", "null"]},
        "organization": {"type": ["string", "null"]},
        "timeout": {"type": "number", "minimum": 0.1},
        "max_retries": {"type": "integer", "minimum": 0},
        "retry_backoff": {"type": "number", "minimum": 0.0},
        "default_model": {"type": ["string", "null"]},
        "default_temperature": {"type": ["number", "null"], "minimum": 0.0, "maximum": 2.0},
        "default_max_tokens": {"type": ["integer", "null"], "minimum": 1},
    },
    "additionalProperties": True,  # Allow provider-specific fields
}

LOOP_SCHEMA = {
    "type": "object",
    "properties": {
        "max_iterations": {"type": "integer", "minimum": 0},
        "parallel_tool_execution": {"type": "boolean"},
        "tool_timeout": {"type": "number", "exclusiveMinimum": 0},
        "max_tool_output_chars": {"type": ["integer", "null"], "minimum": 1},
        "validate_tool_arguments": {"type": "boolean"},
        "default_approval": {"type": "string", "enum": ["auto", "manual"]},
        "approval_policy": {
            "type": "object",
            "additionalProperties": {"type": "string", "enum": ["auto", "manual"]},
        },
        "approval_timeout": {"type": ["number", "null"], "exclusiveMinimum": 0},
        "provider_retries": {"type": "integer", "minimum": 0},
        "provider_retry_backoff": {"type": "number", "minimum": 0.0},
        "knowledge_injection": {"type": "string", "enum": ["system_prompt", "leading_message"]},
        "channel_size": {"type": "integer", "minimum": 1},
    },
    "additionalProperties": False,
}

KNOWLEDGE_SCHEMA = {
    "type": "object",
    "properties": {
        "enabled": {"type": "boolean"},
        "endpoint": {"type": ["string", "null"]},
        "api_key": {"type": ["string", "null"]},
        "timeout": {"type": "number", "exclusiveMinimum": 0},
        "limit": {"type": "integer", "minimum": 1},
        "min_score": {"type": "number"},
    },
    "if": {"properties": {"enabled": {"const": True}}, "required": ["enabled"]},
    "then": {"required": ["endpoint"]},
}

LOGGING_SCHEMA = {
    "type": "object",
    "properties": {
        "level": {"type": "string", "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]},
        "format": {"type": "string", "enum": ["text", "json"]},
        "log_file": {"type": ["string", "null"]},
        "redact_api_keys": {"type": "boolean"},
    },
}

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "provider": {"type": "string", "enum": ["openai", "anthropic"]},
        "system_prompt": {"type": ["string", "null"]},
        "openai": PROVIDER_SCHEMA,
        "anthropic": PROVIDER_SCHEMA,
        "loop": LOOP_SCHEMA,
        "knowledge": KNOWLEDGE_SCHEMA,
        "logging": LOGGING_SCHEMA,
    },
}
