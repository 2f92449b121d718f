from parscript.parscript_datatypes import TaskProgress, ScriptError
from parscript.parscript_runtime import ParScriptEngine, ScriptContext
from parscript.parscript_factory import ParScriptFactory
