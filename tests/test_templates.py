import pytest

from compare_server.models.mongo.preset_model import MongoPresetStore
from compare_server.models.supabase.template_model import SupabaseTemplateStore


@pytest.fixture(params=["supabase", "mongo"])
def templates(request, db_client, mongo_db):
    if request.param == "supabase":
        return SupabaseTemplateStore(db_client)
    return MongoPresetStore(mongo_db)


async def test_only_one_default_template_per_user(templates, user_id):
    first = await templates.save_preset(user_id, {"title": "A", "defaultPreset": True})
    second = await templates.save_preset(user_id, {"title": "B", "defaultPreset": True})
    await templates.save_preset("other-user", {"title": "Theirs", "defaultPreset": True})

    presets = await templates.get_presets(user_id)

    defaults = [p["title"] for p in presets if p["defaultPreset"]]
    assert defaults == ["B"]
    assert [p["title"] for p in presets] == ["B", "A"]
    assert presets[0]["order"] == 0
    assert presets[1]["order"] is None
    assert first["presetId"] != second["presetId"]
    assert (await templates.get_presets("other-user"))[0]["defaultPreset"] is True


async def test_resaving_the_default_keeps_it(templates, user_id):
    saved = await templates.save_preset(user_id, {"title": "A", "defaultPreset": True})

    again = await templates.save_preset(user_id, {"presetId": saved["presetId"], "defaultPreset": True})

    assert again["defaultPreset"] is True
    assert again["title"] == "A"


async def test_default_flag_can_be_cleared(templates, user_id):
    saved = await templates.save_preset(user_id, {"title": "A", "defaultPreset": True})

    cleared = await templates.save_preset(user_id, {"presetId": saved["presetId"], "defaultPreset": False})

    assert cleared["defaultPreset"] is False
    assert cleared["order"] is None


async def test_legacy_preset_fields_round_trip(templates, user_id):
    saved = await templates.save_preset(
        user_id, {"presetId": "legacy-1", "title": "GPT", "model": "gpt-4o", "temperature": 0.2}
    )
    updated = await templates.save_preset(user_id, {"presetId": "legacy-1", "title": "GPT 4o"})

    found = await templates.get_preset(user_id, "legacy-1")

    assert saved["presetId"] == "legacy-1"
    assert updated["title"] == "GPT 4o"
    assert found["model"] == "gpt-4o"
    assert found["temperature"] == 0.2
    assert await templates.get_preset(user_id, "missing") is None


async def test_new_template_gets_a_default_title(templates, user_id):
    saved = await templates.save_preset(user_id, {"criteria": ["accuracy"]})

    assert saved["title"] == "Untitled Template"
    assert saved["usageCount"] == 0


async def test_public_templates_sorted_by_usage(templates, user_id):
    popular = await templates.save_preset(user_id, {"title": "Popular", "isPublic": True})
    await templates.save_preset(user_id, {"title": "Quiet", "isPublic": True})
    await templates.save_preset(user_id, {"title": "Private"})

    assert await templates.increment_template_usage(popular["presetId"]) == 1
    assert await templates.increment_template_usage(popular["presetId"]) == 2

    public = await templates.get_public_templates()

    assert [t["title"] for t in public] == ["Popular", "Quiet"]
    assert public[0]["usageCount"] == 2


async def test_delete_presets_scoped_to_user(templates, user_id):
    await templates.save_preset(user_id, {"title": "A"})
    await templates.save_preset(user_id, {"title": "B"})
    await templates.save_preset("other-user", {"title": "C"})

    result = await templates.delete_presets(user_id)

    assert result == {"deletedCount": 2}
    assert len(await templates.get_presets("other-user")) == 1


async def test_relational_lookup_by_row_id(db_client, user_id):
    store = SupabaseTemplateStore(db_client)
    saved = await store.save_preset(user_id, {"title": "A"})

    by_row_id = await store.get_preset(user_id, saved["id"])

    assert by_row_id["presetId"] == saved["presetId"]
    assert await store.increment_template_usage(saved["id"]) == 1
