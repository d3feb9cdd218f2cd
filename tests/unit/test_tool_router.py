from datetime import datetime, timedelta, timezone

import pytest
from support import OWNER, graph_payload, make_workflow

from auditswarm.config import AuditSwarmConfig
from auditswarm.persistence import CategoryRecord
from auditswarm.tools import WorkflowToolRouter
from auditswarm.tools.router import slugify


def router_for(store, user_id=OWNER, config=None):
    return WorkflowToolRouter(store, user_id, config)


def test_slugify():
    assert slugify("Vendor Master Review!") == "vendor-master-review"
    assert slugify("   ") == "workflow"


@pytest.mark.asyncio
async def test_unknown_tool_is_an_error_result(store):
    result = await router_for(store).call_tool("drop_tables", {})
    assert not result.success
    assert result.error == "Unknown tool: drop_tables"


@pytest.mark.asyncio
async def test_invalid_arguments_are_reported(store):
    result = await router_for(store).call_tool("get_workflow", {})
    assert not result.success
    assert result.error.startswith("Invalid arguments for get_workflow: slug")


@pytest.mark.asyncio
async def test_create_workflow_assigns_unique_slugs(store):
    router = router_for(store)
    nodes, edges = graph_payload(["a", "b"], [("a", "b")])
    args = {"name": "Vendor Review", "description": "Check vendors", "nodes": nodes, "edges": edges}

    first = await router.call_tool("create_workflow", args)
    second = await router.call_tool("create_workflow", args)

    assert first.success and second.success
    assert first.result["slug"] == "vendor-review"
    assert second.result["slug"] == "vendor-review-2"
    assert first.result["step_count"] == 2
    stored = await store.get_workflow(first.result["id"])
    assert stored.user_id == OWNER


@pytest.mark.asyncio
async def test_create_workflow_rejects_dangling_edge(store):
    nodes, _ = graph_payload(["a"])
    result = await router_for(store).call_tool(
        "create_workflow",
        {
            "name": "Broken",
            "description": "Edge to nowhere",
            "nodes": nodes,
            "edges": [{"source": "a", "target": "ghost"}],
        },
    )
    assert not result.success
    assert "ghost" in result.error
    assert await store.list_workflows(OWNER) == []


@pytest.mark.asyncio
async def test_create_workflow_with_unknown_category_fails(store):
    result = await router_for(store).call_tool(
        "create_workflow",
        {"name": "X", "description": "Y", "category_slug": "nope"},
    )
    assert not result.success
    assert "nope" in result.error


@pytest.mark.asyncio
async def test_draft_mode_does_not_persist(store):
    config = AuditSwarmConfig()
    config.agent.draft_workflows = True
    nodes, edges = graph_payload(["a"])
    result = await router_for(store, config=config).call_tool(
        "create_workflow",
        {"name": "Draft", "description": "Review me", "nodes": nodes, "edges": edges},
    )
    assert result.success
    assert result.result["draft"] is True
    assert result.result["nodes"] == nodes
    assert await store.list_workflows(OWNER) == []


@pytest.mark.asyncio
async def test_list_workflows_only_returns_own(store):
    await make_workflow(store, ["a"], name="Mine")
    await make_workflow(store, ["a"], name="Theirs", user_id="someone-else")

    result = await router_for(store).call_tool("list_workflows", {})
    assert result.success
    assert [w["name"] for w in result.result["workflows"]] == ["Mine"]
    assert result.result["total"] == 1


@pytest.mark.asyncio
async def test_list_workflows_search_sort_and_limit(store):
    base = datetime(2025, 1, 1, tzinfo=timezone.utc)
    await make_workflow(store, ["a"], name="Payroll audit", created_at=base, downloads_count=5)
    await make_workflow(
        store, ["a"], name="Vendor audit", created_at=base + timedelta(days=1), downloads_count=1
    )
    await make_workflow(
        store, ["a"], name="Inventory count", created_at=base + timedelta(days=2), downloads_count=9
    )
    router = router_for(store)

    recent = await router.call_tool("list_workflows", {"search": "AUDIT"})
    assert [w["name"] for w in recent.result["workflows"]] == ["Vendor audit", "Payroll audit"]

    popular = await router.call_tool("list_workflows", {"sort_by": "popular", "limit": 2})
    assert [w["name"] for w in popular.result["workflows"]] == ["Inventory count", "Payroll audit"]

    bad_sort = await router.call_tool("list_workflows", {"sort_by": "random"})
    assert not bad_sort.success


@pytest.mark.asyncio
async def test_list_workflows_limit_is_capped(store):
    config = AuditSwarmConfig()
    config.agent.max_list_limit = 2
    for i in range(3):
        await make_workflow(store, ["a"], name=f"Workflow {i}")
    result = await router_for(store, config=config).call_tool("list_workflows", {"limit": 500})
    assert result.result["total"] == 2


@pytest.mark.asyncio
async def test_list_workflows_filters_by_category(store):
    tax = await store.create_category(CategoryRecord(slug="tax", name="Tax"))
    await make_workflow(store, ["a"], name="VAT check", category_id=tax.id)
    await make_workflow(store, ["a"], name="Cash count")
    router = router_for(store)

    result = await router.call_tool("list_workflows", {"category_slug": "tax"})
    assert [w["name"] for w in result.result["workflows"]] == ["VAT check"]
    assert result.result["workflows"][0]["category"] == "Tax"

    unknown = await router.call_tool("list_workflows", {"category_slug": "missing"})
    assert unknown.result == {"workflows": [], "total": 0}


@pytest.mark.asyncio
async def test_get_workflow_reports_ownership(store):
    wf = await make_workflow(store, ["a", "b"], [("a", "b")], slug="shared")
    own = await router_for(store).call_tool("get_workflow", {"slug": "shared"})
    other = await router_for(store, "visitor").call_tool("get_workflow", {"slug": "shared"})
    missing = await router_for(store).call_tool("get_workflow", {"slug": "nope"})

    assert own.result["is_owner"] is True
    assert own.result["id"] == wf.id
    assert len(own.result["nodes"]) == 2
    assert other.result["is_owner"] is False
    assert not missing.success


@pytest.mark.asyncio
async def test_update_workflow_requires_owner_and_bumps_version(store):
    await make_workflow(store, ["a"], slug="ledger")

    denied = await router_for(store, "intruder").call_tool(
        "update_workflow", {"slug": "ledger", "name": "Hijacked"}
    )
    assert not denied.success
    assert denied.error == "You can only update your own workflows"

    updated = await router_for(store).call_tool(
        "update_workflow", {"slug": "ledger", "name": "General ledger"}
    )
    assert updated.success
    assert updated.result["version"] == 2
    stored = await store.get_workflow_by_slug("ledger")
    assert stored.name == "General ledger"


@pytest.mark.asyncio
async def test_update_workflow_validates_new_graph(store):
    await make_workflow(store, ["a", "b"], slug="ledger")
    result = await router_for(store).call_tool(
        "update_workflow", {"slug": "ledger", "edges": [{"source": "b", "target": "b"}]}
    )
    assert not result.success
    stored = await store.get_workflow_by_slug("ledger")
    assert stored.edges == []
    assert stored.version == 1


@pytest.mark.asyncio
async def test_removing_a_step_drops_its_edges(store):
    await make_workflow(store, ["a", "b", "c"], [("a", "b"), ("b", "c"), ("a", "c")], slug="ledger")
    nodes, _ = graph_payload(["a", "c"], [])

    result = await router_for(store).call_tool("update_workflow", {"slug": "ledger", "nodes": nodes})
    assert result.success, result.error
    stored = await store.get_workflow_by_slug("ledger")
    assert [n["id"] for n in stored.nodes] == ["a", "c"]
    assert [(e["source"], e["target"]) for e in stored.edges] == [("a", "c")]
    assert stored.edges[0]["id"] == "edge-a-c"


@pytest.mark.asyncio
async def test_explicit_edges_to_removed_step_are_rejected(store):
    await make_workflow(store, ["a", "b"], [("a", "b")], slug="ledger")
    nodes, _ = graph_payload(["a"], [])
    result = await router_for(store).call_tool(
        "update_workflow",
        {"slug": "ledger", "nodes": nodes, "edges": [{"source": "a", "target": "b"}]},
    )
    assert not result.success
    stored = await store.get_workflow_by_slug("ledger")
    assert len(stored.nodes) == 2


@pytest.mark.asyncio
async def test_update_step_patches_only_given_fields(store):
    await make_workflow(store, ["a", "b"], slug="ledger")
    result = await router_for(store).call_tool(
        "update_step", {"slug": "ledger", "node_id": "b", "instructions": "Sample 25 entries"}
    )
    assert result.success
    assert result.result["patched"] == {"instructions": "Sample 25 entries"}

    stored = await store.get_workflow_by_slug("ledger")
    node_b = next(n for n in stored.nodes if n["id"] == "b")
    assert node_b["data"]["instructions"] == "Sample 25 entries"
    assert node_b["data"]["label"] == "Step b"

    missing = await router_for(store).call_tool(
        "update_step", {"slug": "ledger", "node_id": "zzz", "label": "X"}
    )
    assert not missing.success


@pytest.mark.asyncio
async def test_save_step_result_and_progress(store):
    wf = await make_workflow(store, ["a", "b", "c"], [("a", "b"), ("a", "c")])
    router = router_for(store)

    saved = await router.call_tool(
        "save_step_result", {"workflow_id": wf.id, "node_id": "a", "result": "All vendors valid"}
    )
    assert saved.success
    assert saved.result["completed"] is True
    assert saved.result["completed_at"] is not None

    progress = await router.call_tool("get_workflow_progress", {"workflow_id": wf.id})
    assert progress.success
    data = progress.result
    assert data["completed_steps"] == 1
    assert data["progress"] == 33
    assert [s["node_id"] for s in data["next_steps"]] == ["b", "c"]
    assert data["parallel_groups"] == [["b", "c"]]
    step_a = next(s for s in data["steps"] if s["node_id"] == "a")
    assert step_a["has_result"] is True


@pytest.mark.asyncio
async def test_save_step_result_upserts(store):
    wf = await make_workflow(store, ["a"])
    router = router_for(store)
    await router.call_tool(
        "save_step_result",
        {"workflow_id": wf.id, "node_id": "a", "result": "first", "completed": False},
    )
    await router.call_tool(
        "save_step_result", {"workflow_id": wf.id, "node_id": "a", "result": "second"}
    )
    results = await store.list_step_results(OWNER, wf.id)
    assert len(results) == 1
    assert results[0].result == "second"
    assert results[0].completed is True


@pytest.mark.asyncio
async def test_save_step_result_checks_owner_and_node(store):
    wf = await make_workflow(store, ["a"])
    denied = await router_for(store, "intruder").call_tool(
        "save_step_result", {"workflow_id": wf.id, "node_id": "a", "result": "x"}
    )
    assert not denied.success
    assert "owner" in denied.error

    missing = await router_for(store).call_tool(
        "save_step_result", {"workflow_id": wf.id, "node_id": "ghost", "result": "x"}
    )
    assert not missing.success
    assert await store.list_step_results(OWNER, wf.id) == []


@pytest.mark.asyncio
async def test_progress_warns_on_cycle_and_plan_fails(store):
    nodes, _ = graph_payload(["a", "b"])
    edges = [{"source": "a", "target": "b"}, {"source": "b", "target": "a"}]
    wf = await make_workflow(store, [])
    await store.update_workflow(wf.id, nodes=nodes, edges=edges)
    router = router_for(store)

    progress = await router.call_tool("get_workflow_progress", {"workflow_id": wf.id})
    assert progress.success
    assert progress.result["topological_order"] is None
    assert "cycle" in progress.result["warning"]

    plan = await router.call_tool("get_execution_plan", {"workflow_id": wf.id})
    assert not plan.success
    assert "cycle" in plan.error


@pytest.mark.asyncio
async def test_execution_plan_payload(store):
    wf = await make_workflow(store, ["a", "b"], [("a", "b")], name="Cash audit")
    plan = await router_for(store).call_tool("get_execution_plan", {"workflow_id": wf.id})
    assert plan.success
    assert plan.result["workflow_name"] == "Cash audit"
    assert plan.result["total_steps"] == 2
    assert plan.result["next_steps"] == [{"node_id": "a", "label": "Step a"}]


@pytest.mark.asyncio
async def test_step_context_includes_upstream_results(store):
    wf = await make_workflow(store, ["a", "b", "c"], [("a", "c"), ("b", "c")])
    await store.upsert_step_result(OWNER, wf.id, "a", result="A done", completed=True)
    await store.upsert_step_result(OWNER, wf.id, "b", result="B draft")

    result = await router_for(store).call_tool(
        "get_step_context", {"workflow_id": wf.id, "node_id": "c"}
    )
    assert result.success
    data = result.result
    assert data["instructions"] == "Do c"
    upstream = {u["node_id"]: u for u in data["upstream_steps"]}
    assert upstream["a"]["result"] == "A done"
    assert upstream["a"]["completed"] is True
    assert upstream["b"]["completed"] is False
    assert data["all_upstream_completed"] is False
    assert data["completed"] is False


@pytest.mark.asyncio
async def test_toggle_favorite_round_trip(store):
    wf = await make_workflow(store, ["a"], user_id="author")
    router = router_for(store)

    added = await router.call_tool("toggle_favorite", {"workflow_id": wf.id})
    assert added.result["favorited"] is True
    assert added.result["favorites_count"] == 1

    favorites = await router.call_tool("get_favorites", {})
    assert [f["id"] for f in favorites.result["favorites"]] == [wf.id]

    removed = await router.call_tool("toggle_favorite", {"workflow_id": wf.id})
    assert removed.result["favorited"] is False
    assert removed.result["favorites_count"] == 0


@pytest.mark.asyncio
async def test_categories_include_counts(store):
    audit = await store.create_category(CategoryRecord(slug="audit", name="Audit"))
    await store.create_category(CategoryRecord(slug="tax", name="Tax"))
    await make_workflow(store, ["a"], name="One", category_id=audit.id)
    await make_workflow(store, ["a"], name="Two", category_id=audit.id)

    result = await router_for(store).call_tool("get_categories", {})
    counts = {c["slug"]: c["workflow_count"] for c in result.result["categories"]}
    assert counts == {"audit": 2, "tax": 0}


@pytest.mark.asyncio
async def test_store_exceptions_become_error_results(store, monkeypatch):
    async def broken(*args, **kwargs):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(store, "list_workflows", broken)
    result = await router_for(store).call_tool("list_workflows", {})
    assert not result.success
    assert result.error == "database is locked"
