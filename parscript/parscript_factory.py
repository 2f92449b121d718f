"""
Engine identity used by hosts to discover the R engine.
"""
from typing import List, Optional

ENGINE_NAME = "R"
R_ENGINE_VERSION = "1"
R_LANGUAGE_NAME = "R"
R_LANGUAGE_VERSION = "2"
R_FILE_EXTENSIONS = ["R", "r", "parscript"]
ENGINE_NAMES = ["R", "r", "parscript"]
R_MIME_TYPES = ["text/x-R"]


class ParScriptFactory:
    """Describes the R engine and creates ParScriptEngine instances."""

    engine_name = ENGINE_NAME
    engine_version = R_ENGINE_VERSION
    language_name = R_LANGUAGE_NAME
    language_version = R_LANGUAGE_VERSION

    @property
    def names(self) -> List[str]:
        return list(ENGINE_NAMES)

    @property
    def extensions(self) -> List[str]:
        return list(R_FILE_EXTENSIONS)

    @property
    def mime_types(self) -> List[str]:
        return list(R_MIME_TYPES)

    def get_parameter(self, key: Optional[str]):
        match key:
            case "name" | "engine":
                return self.engine_name
            case "engine_version":
                return self.engine_version
            case "language":
                return self.language_name
            case "language_version":
                return self.language_version
        return None

    def get_script_engine(self, interpreter=None):
        from parscript.parscript_runtime import ParScriptEngine
        return ParScriptEngine(factory=self, interpreter=interpreter)

    def get_method_call_syntax(self, obj: str, method: str, *args: str) -> str:
        return f"{method}({','.join([obj, *args])});"

    def get_output_statement(self, to_display: str) -> str:
        return f"cat('{to_display}');"

    def get_program(self, *statements: str) -> str:
        return "".join(f"{s};\n" for s in statements)
