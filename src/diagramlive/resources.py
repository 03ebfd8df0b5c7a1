import json
from importlib import resources
from typing import Dict, List


def load_templates() -> List[Dict[str, str]]:
    with resources.files(__package__).joinpath("data/templates.json").open("r", encoding="utf-8") as fh:
        return json.load(fh)


def get_template(template_id: str) -> Dict[str, str]:
    for template in load_templates():
        if template["id"] == template_id:
            return template
    raise KeyError(template_id)
