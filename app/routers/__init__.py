"""
API routers package
"""

from app.routers.prompts import router as prompts_router
from app.routers.agents import router as agents_router
from app.routers.prompt_versions import router as prompt_versions_router
from app.routers.admin import router as admin_router
from app.routers.calls import router as calls_router
from app.routers.contact_variables import router as contact_variables_router
