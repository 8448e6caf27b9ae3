"""Configuration API routes — importable entity configuration."""

from fastapi import APIRouter

from app.core.entity_config import ENTITIES

router = APIRouter()


# ─── Entity Configuration ──────────────────────────────────────

@router.get("/entities")
async def get_entity_config():
    """
    Get the importable entity configuration.

    Returns every entity a backup archive can carry, in import order,
    with its archive path and fields (archive key, data type, whether
    the field is required).
    """
    return {
        name: {
            "label": cfg.label,
            "plural_label": cfg.plural_label,
            "archive_path": cfg.archive_path,
            "statistic": cfg.stat_field,
            "fields": [
                {
                    "name": f.name,
                    "archive_key": f.archive_key,
                    "data_type": f.data_type,
                    "required": f.required,
                }
                for f in cfg.fields
            ],
        }
        for name, cfg in ENTITIES.items()
    }
