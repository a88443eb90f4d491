"""Tests for terraformig."""

import json
import runpy
from pathlib import Path

import pytest
from click.testing import CliRunner

from terraformig import (
    BackendReconciler,
    BackupAlreadyExists,
    BackupStore,
    BackupUnreadable,
    MoveExecutor,
    MoveFailed,
    NoBackupFound,
    Orchestrator,
    Phase,
    PlanDiffResolver,
    PlanFailed,
    PlannedChange,
    ReconcileFailed,
    StateStore,
    StateTool,
    TerraformCommandError,
    ValidationError,
    build_config,
    collapse_addresses,
    detect_remote_backend,
    module_key,
)
from terraformig import cli
from terraformig.addresses import same_module, split_address, strip_index
from terraformig.declarations import declared_addresses, undeclared


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

AWS = 'provider["registry.terraform.io/hashicorp/aws"]'


def resource_block(rtype, name, module=None, rid=None):
    block = {
        "mode": "managed",
        "type": rtype,
        "name": name,
        "provider": AWS,
        "instances": [{"schema_version": 0, "attributes": {"id": rid or f"{name}-id"}}],
    }
    if module:
        block["module"] = module
    return block


def make_state(*blocks, serial=1, lineage="lineage-abc"):
    return {
        "version": 4,
        "terraform_version": "1.5.0",
        "serial": serial,
        "lineage": lineage,
        "outputs": {},
        "resources": list(blocks),
    }


def block_address(block):
    parts = []
    if block.get("module"):
        parts.append(block["module"])
    if block.get("mode") == "data":
        parts.append(f"data.{block['type']}.{block['name']}")
    else:
        parts.append(f"{block['type']}.{block['name']}")
    return ".".join(parts)


def state_addresses(path):
    with open(path, "r", encoding="utf-8") as fh:
        return [block_address(b) for b in json.load(fh).get("resources", [])]


def write_state(path, state):
    Path(path).write_text(json.dumps(state, indent=2) + "\n", encoding="utf-8")


SOURCE_STATE = make_state(
    resource_block("aws_vpc", "main"),
    resource_block("aws_s3_bucket", "logs"),
    resource_block("aws_vpc", "this", module="module.network"),
    resource_block("aws_subnet", "a", module="module.network"),
    resource_block("aws_subnet", "b", module="module.network"),
    serial=7,
)

DEST_STATE = make_state(
    resource_block("aws_iam_role", "deployer"),
    serial=3,
    lineage="lineage-dest",
)

SOURCE_TF = """\
resource "aws_vpc" "main" {
  cidr_block = "10.0.0.0/16"
}
"""

DEST_TF = """\
resource "aws_iam_role" "deployer" {
  name = "deployer"
}

resource "aws_s3_bucket" "logs" {
  bucket = "logs"
}

module "network" {
  source = "./modules/network"
}

data "aws_ami" "ubuntu" {
  most_recent = true
}
"""

SCENARIO_BUCKET = [
    ("aws_vpc.main", ["no-op"]),
    ("aws_s3_bucket.logs", ["delete"]),
]

SCENARIO_MODULE = [
    ("aws_vpc.main", ["no-op"]),
    ("module.network.aws_vpc.this", ["delete"]),
    ("module.network.aws_subnet.a", ["delete"]),
    ("module.network.aws_subnet.b", ["delete"]),
]


class FakeTerraform(StateTool):
    """
    In-process stand-in for the Terraform CLI working on real state files.

    Local stores keep their state in ``terraform.tfstate``; stores listed in
    ``remote`` keep it in :attr:`remote_states`, as a backend would.
    """

    def __init__(self, plans=None, remote=(), fail_plan=False, fail_force_copy=False, fail_pull=()):
        self.plans = {Path(k).resolve(): v for k, v in (plans or {}).items()}
        self.remote = {Path(p).resolve() for p in remote}
        self.remote_states = {}
        self.fail_plan = fail_plan
        self.fail_force_copy = fail_force_copy
        self.fail_pull = {Path(p).resolve() for p in fail_pull}
        self.calls = []

    # -- helpers -----------------------------------------------------------

    def _state(self, root):
        if root in self.remote:
            return json.loads(self.remote_states.get(root, json.dumps(make_state())))
        path = root / "terraform.tfstate"
        if not path.exists():
            return make_state()
        return json.loads(path.read_text(encoding="utf-8"))

    def _save(self, root, state):
        if root in self.remote:
            self.remote_states[root] = json.dumps(state)
        else:
            write_state(root / "terraform.tfstate", state)

    # -- StateTool ---------------------------------------------------------

    def init(self, path, *, reconfigure=False, force_copy=False):
        root = Path(path).resolve()
        self.calls.append(("init", root, reconfigure, force_copy))
        if force_copy and self.fail_force_copy:
            raise TerraformCommandError(["terraform", "init", "-force-copy"], 1, "Error: Failed to copy state")
        backend = "s3" if root in self.remote else "local"
        cached = root / ".terraform" / "terraform.tfstate"
        cached.parent.mkdir(exist_ok=True)
        cached.write_text(json.dumps({"version": 3, "backend": {"type": backend}}))
        if root in self.remote and force_copy and (root / "terraform.tfstate").exists():
            self.remote_states[root] = (root / "terraform.tfstate").read_text()
        if root in self.remote and reconfigure:
            return f'Initializing the backend...\nSuccessfully configured the backend "{backend}"! Terraform will automatically\nuse this backend unless the backend configuration changes.'
        return "Terraform has been successfully initialized!"

    def plan(self, path, out):
        self.calls.append(("plan", Path(path).resolve()))
        if self.fail_plan:
            raise TerraformCommandError(["terraform", "plan"], 1, "Error: Unsupported argument")
        Path(out).write_text("fake-plan")
        return Path(out)

    def show(self, path, plan_file):
        root = Path(path).resolve()
        changes = self.plans.get(root, [])
        return {
            "format_version": "1.2",
            "resource_changes": [
                {"address": address, "change": {"actions": actions}}
                for address, actions in changes
            ],
        }

    def state_pull(self, path):
        if Path(path).resolve() in self.fail_pull:
            raise TerraformCommandError(["terraform", "state", "pull"], 1, "Error: Failed to load state")
        return json.dumps(self._state(Path(path).resolve()), indent=2) + "\n"

    def state_mv(self, path, source, destination, *, state_out):
        root = Path(path).resolve()
        self.calls.append(("mv", root, source, destination, Path(state_out)))
        state = self._state(root)
        moving = [
            b for b in state["resources"]
            if block_address(b) == source or block_address(b).startswith(source + ".")
        ]
        if not moving:
            raise TerraformCommandError(
                ["terraform", "state", "mv", source, destination], 1,
                f'Error: Invalid source address\nCannot move {source}: does not match anything in the current state.',
            )
        state["resources"] = [b for b in state["resources"] if b not in moving]
        state["serial"] += 1
        self._save(root, state)

        out = Path(state_out)
        target = json.loads(out.read_text()) if out.exists() else make_state()
        target["resources"].extend(moving)
        target["serial"] += 1
        write_state(out, target)

    def state_push(self, path, state_file, *, force=False):
        root = Path(path).resolve()
        self.calls.append(("push", root, force))
        self.remote_states[root] = Path(state_file).read_text()

    # -- assertions --------------------------------------------------------

    def calls_of(self, kind):
        return [c for c in self.calls if c[0] == kind]


@pytest.fixture
def stores(tmp_path):
    """Source and destination terraform directories with local state."""
    src = tmp_path / "source"
    dest = tmp_path / "destination"
    src.mkdir()
    dest.mkdir()
    (src / "main.tf").write_text(SOURCE_TF)
    (dest / "main.tf").write_text(DEST_TF)
    write_state(src / "terraform.tfstate", SOURCE_STATE)
    write_state(dest / "terraform.tfstate", DEST_STATE)
    return src.resolve(), dest.resolve()


def migrate(stores, plan, mode="apply", remote=(), **kwargs):
    src, dest = stores
    tool = FakeTerraform(plans={src: plan}, remote=remote)
    run = Orchestrator(tool).run(mode, dest, src, **kwargs)
    return run, tool


# ---------------------------------------------------------------------------
# Address collapsing
# ---------------------------------------------------------------------------


def test_module_key():
    assert module_key("module.network.aws_subnet.a") == "module.network"


def test_module_key_of_bare_resource():
    assert module_key("aws_s3_bucket.logs") == "aws_s3_bucket.logs"



def test_module_key_keeps_dotted_for_each_key():
    assert module_key('module.a["x.y"].aws_vpc.r') == 'module.a["x.y"]'


def test_split_address_ignores_dots_inside_brackets():
    assert split_address('module.a["x.y"].aws_vpc.r') == ["module", 'a["x.y"]', "aws_vpc", "r"]
    assert split_address('aws_instance.web["blue.example.com"]') == ["aws_instance", 'web["blue.example.com"]']


def test_same_module():
    assert same_module("module.a.aws_vpc.x", "module.a.aws_subnet.y")
    assert not same_module("module.a.aws_vpc.x", "module.b.aws_vpc.x")


def test_strip_index():
    assert strip_index('aws_instance.web["blue"]') == "aws_instance.web"
    assert strip_index("aws_instance.web[0]") == "aws_instance.web"
    assert strip_index("aws_instance.web") == "aws_instance.web"


def test_collapse_is_prefix_stable():
    addresses = ["module.a.resource.x", "module.a.resource.y", "resource.z"]
    assert collapse_addresses(addresses) == ["module.a", "resource.z"]


def test_collapse_module_children_to_one_move():
    addresses = [a for a, _ in SCENARIO_MODULE[1:]]
    assert collapse_addresses(addresses) == ["module.network"]


def test_collapse_keeps_bare_resources_individually():
    addresses = ["aws_subnet.a[0]", "aws_subnet.a[1]", "aws_vpc.main"]
    assert collapse_addresses(addresses) == addresses


def test_collapse_only_merges_adjacent_module_children():
    addresses = ["module.a.aws_vpc.x", "aws_s3_bucket.logs", "module.a.aws_subnet.y"]
    assert collapse_addresses(addresses) == ["module.a", "aws_s3_bucket.logs", "module.a"]


def test_collapse_distinct_modules():
    addresses = ["module.a.aws_vpc.x", "module.b.aws_vpc.x", "module.b.aws_subnet.y"]
    assert collapse_addresses(addresses) == ["module.a", "module.b"]


def test_collapse_module_instance_keys():
    addresses = ['module.app["blue"].aws_instance.web', 'module.app["blue"].aws_eip.web']
    assert collapse_addresses(addresses) == ['module.app["blue"]']


def test_collapse_module_with_dotted_instance_key():
    addresses = ['module.site["example.com"].aws_s3_bucket.b', 'module.site["example.com"].aws_route53_zone.z']
    assert collapse_addresses(addresses) == ['module.site["example.com"]']


def test_collapse_empty():
    assert collapse_addresses([]) == []


# ---------------------------------------------------------------------------
# Plan-diff resolution
# ---------------------------------------------------------------------------


def test_parse_changes_keeps_document_order():
    doc = {"resource_changes": [
        {"address": "b.two", "change": {"actions": ["delete"]}},
        {"address": "a.one", "change": {"actions": ["create"]}},
    ]}
    changes = PlanDiffResolver.parse_changes(doc)
    assert [c.address for c in changes] == ["b.two", "a.one"]
    assert changes[0].actions == ["delete"]


def test_parse_changes_without_resource_changes():
    assert PlanDiffResolver.parse_changes({"format_version": "1.2"}) == []


def test_parse_changes_malformed_entry():
    with pytest.raises(PlanFailed):
        PlanDiffResolver.parse_changes({"resource_changes": [{"change": {"actions": ["delete"]}}]})


def test_deletions_filter():
    changes = [
        PlannedChange("aws_vpc.main", ["no-op"]),
        PlannedChange("aws_s3_bucket.logs", ["delete"]),
        PlannedChange("aws_instance.web", ["create"]),
        PlannedChange("aws_instance.db", ["update"]),
        PlannedChange("aws_instance.api", ["delete", "create"]),
        PlannedChange("aws_instance.cache", ["create", "delete"]),
    ]
    assert PlanDiffResolver.deletions(changes) == [
        "aws_s3_bucket.logs",
        "aws_instance.api",
        "aws_instance.cache",
    ]


def test_compute_plan_writes_artifact(stores):
    src, _ = stores
    tool = FakeTerraform(plans={src: SCENARIO_BUCKET})
    resolver = PlanDiffResolver(tool)
    changes = resolver.compute_plan(StateStore(src))
    assert [c.address for c in changes] == ["aws_vpc.main", "aws_s3_bucket.logs"]
    assert (src / "terraformig.tfplan").exists()
    resolver.discard_plan(StateStore(src))
    assert not (src / "terraformig.tfplan").exists()


def test_compute_plan_failure_raises_plan_failed(stores):
    src, _ = stores
    resolver = PlanDiffResolver(FakeTerraform(fail_plan=True))
    with pytest.raises(PlanFailed):
        resolver.compute_plan(StateStore(src))


def test_discard_plan_without_artifact(stores):
    src, _ = stores
    PlanDiffResolver.discard_plan(StateStore(src))


# ---------------------------------------------------------------------------
# Backup store
# ---------------------------------------------------------------------------


def test_create_backup_writes_pulled_state(stores):
    src, _ = stores
    backups = BackupStore(FakeTerraform())
    backup = backups.create(StateStore(src))
    assert backup.path == src / "terraformig.tfstate.backup"
    assert backup.path.read_text() == backup.content
    assert json.loads(backup.content)["serial"] == 7


def test_create_backup_twice_is_rejected(stores):
    src, _ = stores
    backups = BackupStore(FakeTerraform())
    store = StateStore(src)
    first = backups.create(store)
    with pytest.raises(BackupAlreadyExists):
        backups.create(store)
    assert store.backup_path.read_text() == first.content


def test_purge_is_idempotent(stores):
    src, _ = stores
    backups = BackupStore(FakeTerraform())
    store = StateStore(src)
    backups.create(store)
    (src / "terraformig.tfstate.backup.old").write_text("{}")
    removed = backups.purge(store)
    assert len(removed) == 2
    assert backups.purge(store) == []
    assert not backups.exists(store)


def test_purge_leaves_live_state(stores):
    src, _ = stores
    backups = BackupStore(FakeTerraform())
    store = StateStore(src)
    backups.create(store)
    backups.purge(store)
    assert store.live_state_path.exists()


def test_rollback_restores_local_state_and_keeps_backup(stores):
    src, _ = stores
    backups = BackupStore(FakeTerraform())
    store = StateStore(src)
    backup = backups.create(store)
    write_state(store.live_state_path, make_state())
    backups.rollback(store)
    assert store.live_state_path.read_text() == backup.content
    assert backups.exists(store)


def test_rollback_without_backup(stores):
    src, _ = stores
    with pytest.raises(NoBackupFound) as err:
        BackupStore(FakeTerraform()).rollback(StateStore(src))
    assert err.value.stores == [src]


def test_read_backup_with_invalid_bytes(stores):
    src, _ = stores
    store = StateStore(src)
    store.backup_path.write_bytes(b"\xff\xfe\x00")
    with pytest.raises(BackupUnreadable) as err:
        BackupStore(FakeTerraform()).read(store)
    assert err.value.store == src


def test_rollback_of_unreadable_backup_keeps_live_state(stores):
    src, _ = stores
    store = StateStore(src)
    store.backup_path.write_bytes(b"\xff\xfe\x00")
    before = store.live_state_path.read_bytes()
    with pytest.raises(BackupUnreadable):
        BackupStore(FakeTerraform()).rollback(store)
    assert store.live_state_path.read_bytes() == before


def test_rollback_pushes_remote_state(stores):
    _, dest = stores
    tool = FakeTerraform(remote=[dest])
    tool.remote_states[dest] = json.dumps(DEST_STATE)
    tool.init(dest, reconfigure=True)
    backups = BackupStore(tool)
    store = StateStore(dest)
    backup = backups.create(store)
    tool.remote_states[dest] = json.dumps(make_state())
    backups.rollback(store)
    assert tool.calls_of("push") == [("push", dest, True)]
    assert tool.remote_states[dest] == backup.content


# ---------------------------------------------------------------------------
# Move executor
# ---------------------------------------------------------------------------


def test_dry_run_moves_nothing(stores):
    src, dest = stores
    before = (dest / "terraform.tfstate").read_bytes()
    tool = FakeTerraform()
    report = MoveExecutor(tool).execute(
        ["aws_s3_bucket.logs", "module.network"], StateStore(src), StateStore(dest), dry_run=True,
    )
    assert report.moved_count == 2
    assert [o.status for o in report.outcomes] == ["would move", "would move"]
    assert tool.calls_of("mv") == []
    assert (dest / "terraform.tfstate").read_bytes() == before


def test_execute_moves_into_destination_live_state(stores):
    src, dest = stores
    tool = FakeTerraform()
    report = MoveExecutor(tool).execute(["aws_s3_bucket.logs"], StateStore(src), StateStore(dest))
    assert report.moved_count == 1
    assert tool.calls_of("mv")[0][4] == dest / "terraform.tfstate"
    assert "aws_s3_bucket.logs" in state_addresses(dest / "terraform.tfstate")
    assert "aws_s3_bucket.logs" not in state_addresses(src / "terraform.tfstate")


def test_execute_stops_at_first_failure(stores):
    src, dest = stores
    tool = FakeTerraform()
    with pytest.raises(MoveFailed) as err:
        MoveExecutor(tool).execute(
            ["aws_s3_bucket.logs", "aws_instance.missing", "aws_vpc.main"],
            StateStore(src),
            StateStore(dest),
        )
    assert err.value.address == "aws_instance.missing"
    report = err.value.report
    assert report.moved_count == 1
    assert [o.status for o in report.outcomes] == ["moved", "failed"]
    assert len(tool.calls_of("mv")) == 2
    assert "aws_vpc.main" in state_addresses(src / "terraform.tfstate")


def test_stage_state_out(stores):
    _, dest = stores
    MoveExecutor(FakeTerraform()).stage_state_out(StateStore(dest), '{"serial": 9}')
    assert (dest / "terraform.tfstate").read_text() == '{"serial": 9}'


# ---------------------------------------------------------------------------
# Backend reconciliation
# ---------------------------------------------------------------------------


def test_detect_remote_backend():
    assert detect_remote_backend('Successfully configured the backend "s3"! Terraform will')
    assert detect_remote_backend('Successfully configured the backend "azurerm"!')


def test_detect_local_backend():
    assert not detect_remote_backend('Successfully configured the backend "local"!')
    assert not detect_remote_backend("Terraform has been successfully initialized!")
    assert not detect_remote_backend("")


def test_reconcile_local_keeps_state_file(stores):
    _, dest = stores
    tool = FakeTerraform()
    tool.init(dest)
    removed = BackendReconciler(tool).reconcile(StateStore(dest), remote=False)
    assert removed == [dest / ".terraform" / "terraform.tfstate"]
    assert ("init", dest, False, True) in tool.calls
    assert (dest / "terraform.tfstate").exists()


def test_reconcile_remote_removes_pull_target(stores):
    _, dest = stores
    tool = FakeTerraform(remote=[dest])
    removed = BackendReconciler(tool).reconcile(StateStore(dest), remote=True)
    assert dest / "terraform.tfstate" in removed
    assert not (dest / "terraform.tfstate").exists()
    assert json.loads(tool.remote_states[dest])["lineage"] == "lineage-dest"


# ---------------------------------------------------------------------------
# Destination declarations
# ---------------------------------------------------------------------------


def test_declared_addresses(stores):
    _, dest = stores
    assert declared_addresses(dest) == {
        "aws_iam_role.deployer",
        "aws_s3_bucket.logs",
        "module.network",
        "data.aws_ami.ubuntu",
    }


def test_undeclared():
    declared = {"aws_s3_bucket.logs", "module.network"}
    move_set = ["aws_s3_bucket.logs[0]", 'module.network["a"]', "aws_vpc.main", "module.dns"]
    assert undeclared(move_set, declared) == ["aws_vpc.main", "module.dns"]


def test_declared_addresses_empty_dir(tmp_path):
    assert declared_addresses(tmp_path) == set()


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_build_config_plan_implies_cleanup(stores):
    src, dest = stores
    config = build_config("plan", dest, src)
    assert config.dry_run is True
    assert config.cleanup is True


def test_build_config_apply(stores):
    src, dest = stores
    config = build_config("apply", str(dest), str(src))
    assert config.source == src
    assert config.destination == dest
    assert config.dry_run is False
    assert config.cleanup is False


def test_build_config_source_defaults_to_cwd(stores, monkeypatch):
    src, dest = stores
    monkeypatch.chdir(src)
    assert build_config("apply", dest).source == src


def test_build_config_missing_destination(stores, tmp_path):
    src, _ = stores
    with pytest.raises(ValidationError):
        build_config("apply", tmp_path / "nowhere", src)
    with pytest.raises(ValidationError):
        build_config("apply", None, src)


def test_build_config_empty_destination(stores, tmp_path):
    src, _ = stores
    empty = tmp_path / "empty"
    empty.mkdir()
    with pytest.raises(ValidationError):
        build_config("apply", empty, src)


def test_build_config_unknown_mode(stores):
    src, dest = stores
    with pytest.raises(ValidationError):
        build_config("destroy", dest, src)


def test_build_config_is_frozen(stores):
    src, dest = stores
    config = build_config("apply", dest, src)
    with pytest.raises(AttributeError):
        config.cleanup = True


# ---------------------------------------------------------------------------
# Orchestrator: end-to-end scenarios
# ---------------------------------------------------------------------------


def test_apply_moves_single_bucket(stores):
    src, dest = stores
    run, tool = migrate(stores, SCENARIO_BUCKET)
    assert run.status == "succeeded"
    assert run.exit_code == 0
    assert run.phase is Phase.DONE
    assert run.move_set == ["aws_s3_bucket.logs"]
    assert run.moved_count == 1
    assert run.warnings == []
    dest_addresses = state_addresses(dest / "terraform.tfstate")
    assert "aws_s3_bucket.logs" in dest_addresses
    assert "aws_iam_role.deployer" in dest_addresses
    src_addresses = state_addresses(src / "terraform.tfstate")
    assert "aws_s3_bucket.logs" not in src_addresses
    assert "aws_vpc.main" in src_addresses


def test_apply_moves_module_in_one_call(stores):
    src, dest = stores
    run, tool = migrate(stores, SCENARIO_MODULE)
    assert run.status == "succeeded"
    assert run.move_set == ["module.network"]
    assert len(tool.calls_of("mv")) == 1
    dest_addresses = state_addresses(dest / "terraform.tfstate")
    assert "module.network.aws_subnet.a" in dest_addresses
    assert "module.network.aws_subnet.b" in dest_addresses
    assert not any(a.startswith("module.network") for a in state_addresses(src / "terraform.tfstate"))


def test_apply_keeps_backups_and_removes_plan(stores):
    src, dest = stores
    run, _ = migrate(stores, SCENARIO_BUCKET)
    assert (src / "terraformig.tfstate.backup").exists()
    assert (dest / "terraformig.tfstate.backup").exists()
    assert not (src / "terraformig.tfplan").exists()
    assert json.loads((src / "terraformig.tfstate.backup").read_text())["serial"] == 7


def test_apply_reconciles_destination(stores):
    _, dest = stores
    run, tool = migrate(stores, SCENARIO_BUCKET)
    assert ("init", dest, True, False) in tool.calls
    assert ("init", dest, False, True) in tool.calls
    assert (dest / "terraform.tfstate").exists()


def test_apply_with_cleanup_purges_backups(stores):
    src, dest = stores
    run, _ = migrate(stores, SCENARIO_BUCKET, cleanup=True)
    assert run.status == "succeeded"
    assert not (src / "terraformig.tfstate.backup").exists()
    assert not (dest / "terraformig.tfstate.backup").exists()


def test_apply_to_remote_destination(stores):
    src, dest = stores
    tool = FakeTerraform(plans={src: SCENARIO_BUCKET}, remote=[dest])
    tool.remote_states[dest] = json.dumps(DEST_STATE)
    run = Orchestrator(tool).apply(dest, src)
    assert run.status == "succeeded"
    assert not (dest / "terraform.tfstate").exists()
    remote = [block_address(b) for b in json.loads(tool.remote_states[dest])["resources"]]
    assert remote == ["aws_iam_role.deployer", "aws_s3_bucket.logs"]


def test_apply_warns_about_undeclared_addresses(stores):
    src, dest = stores
    (dest / "main.tf").write_text('resource "aws_iam_role" "deployer" {\n  name = "deployer"\n}\n')
    run, _ = migrate(stores, SCENARIO_BUCKET)
    assert run.status == "succeeded"
    assert run.warnings == [f"aws_s3_bucket.logs is not declared in {dest}"]


def test_nothing_to_move_is_a_no_op(stores):
    _, dest = stores
    before = (dest / "terraform.tfstate").read_text()
    run, tool = migrate(stores, [("aws_vpc.main", ["no-op"])])
    assert run.status == "no-op"
    assert run.exit_code == 0
    assert run.move_set == []
    assert "0 resources to move" in run.warnings[0]
    assert tool.calls_of("mv") == []
    assert ("init", dest, False, True) not in tool.calls
    assert json.loads((dest / "terraform.tfstate").read_text()) == json.loads(before)


def test_nothing_to_move_skips_remote_cleanup(stores):
    src, dest = stores
    (dest / "terraform.tfstate").unlink()
    tool = FakeTerraform(plans={src: []}, remote=[dest])
    tool.remote_states[dest] = json.dumps(DEST_STATE)
    run = Orchestrator(tool).apply(dest, src)
    assert run.status == "no-op"
    assert not (dest / "terraform.tfstate").exists()
    assert run.removed_files == []
    assert ("init", dest, False, True) not in tool.calls


def test_plan_is_dry_run(stores):
    src, dest = stores
    dest_before = (dest / "terraform.tfstate").read_bytes()
    src_before = (src / "terraform.tfstate").read_bytes()
    run, tool = migrate(stores, SCENARIO_MODULE + SCENARIO_BUCKET[1:], mode="plan")
    assert run.status == "succeeded"
    assert run.move_set == ["module.network", "aws_s3_bucket.logs"]
    assert run.moved_count == 2
    assert [o.status for o in run.outcomes] == ["would move", "would move"]
    assert tool.calls_of("mv") == []
    assert ("init", dest, False, True) not in tool.calls
    assert (dest / "terraform.tfstate").read_bytes() == dest_before
    assert (src / "terraform.tfstate").read_bytes() == src_before


def test_plan_cleans_up_its_backups(stores):
    src, dest = stores
    migrate(stores, SCENARIO_BUCKET, mode="plan")
    assert not (src / "terraformig.tfstate.backup").exists()
    assert not (dest / "terraformig.tfstate.backup").exists()
    assert not (src / "terraformig.tfplan").exists()


def test_existing_backup_aborts_before_any_write(stores):
    src, dest = stores
    (dest / "terraformig.tfstate.backup").write_text("{}")
    src_before = (src / "terraform.tfstate").read_bytes()
    run, tool = migrate(stores, SCENARIO_BUCKET)
    assert run.failed
    assert run.exit_code == 1
    assert run.failed_phase is Phase.BACKING_UP
    assert isinstance(run.error, BackupAlreadyExists)
    assert not (src / "terraformig.tfstate.backup").exists()
    assert (src / "terraform.tfstate").read_bytes() == src_before
    assert tool.calls == []


def test_second_apply_is_refused(stores):
    migrate(stores, SCENARIO_BUCKET)
    run, _ = migrate(stores, SCENARIO_BUCKET)
    assert run.failed
    assert isinstance(run.error, BackupAlreadyExists)


def test_non_adjacent_module_children_fail_second_move(stores):
    src, dest = stores
    plan = [
        ("module.network.aws_vpc.this", ["delete"]),
        ("aws_s3_bucket.logs", ["delete"]),
        ("module.network.aws_subnet.a", ["delete"]),
    ]
    run, tool = migrate(stores, plan)
    assert run.move_set == ["module.network", "aws_s3_bucket.logs", "module.network"]
    assert run.failed
    assert run.failed_phase is Phase.MOVING
    assert isinstance(run.error, MoveFailed)
    assert run.error.address == "module.network"
    assert [o.status for o in run.outcomes] == ["moved", "moved", "failed"]
    assert run.moved_count == 2
    assert run.backups_taken
    assert not (src / "terraformig.tfplan").exists()
    assert ("init", dest, False, True) not in tool.calls


def test_plan_failure(stores):
    src, dest = stores
    tool = FakeTerraform(fail_plan=True)
    run = Orchestrator(tool).apply(dest, src)
    assert run.failed
    assert run.failed_phase is Phase.PLANNING
    assert isinstance(run.error, PlanFailed)
    assert tool.calls_of("mv") == []


def test_plan_failure_leaves_no_local_copy_of_remote_destination(stores):
    src, dest = stores
    (dest / "terraform.tfstate").unlink()
    tool = FakeTerraform(fail_plan=True, remote=[dest])
    tool.remote_states[dest] = json.dumps(DEST_STATE)
    run = Orchestrator(tool).apply(dest, src)
    assert run.failed
    assert run.failed_phase is Phase.PLANNING
    assert not (dest / "terraform.tfstate").exists()
    assert tool.remote_states[dest] == json.dumps(DEST_STATE)


def test_reconcile_failure_keeps_backups(stores):
    src, dest = stores
    tool = FakeTerraform(plans={src: SCENARIO_BUCKET}, fail_force_copy=True)
    run = Orchestrator(tool).apply(dest, src, cleanup=True)
    assert run.failed
    assert run.exit_code == 1
    assert run.failed_phase is Phase.RECONCILING
    assert isinstance(run.error, ReconcileFailed)
    assert run.moved_count == 1
    assert (src / "terraformig.tfstate.backup").exists()
    assert (dest / "terraformig.tfstate.backup").exists()


def test_source_backup_failure_leaves_destination_untouched(stores):
    src, dest = stores
    dest_before = (dest / "terraform.tfstate").read_bytes()
    tool = FakeTerraform(plans={src: SCENARIO_BUCKET}, fail_pull=[src])
    run = Orchestrator(tool).apply(dest, src)
    assert run.failed
    assert run.failed_phase is Phase.BACKING_UP
    assert isinstance(run.error, TerraformCommandError)
    assert not (src / "terraformig.tfstate.backup").exists()
    assert not (dest / "terraformig.tfstate.backup").exists()
    assert (dest / "terraform.tfstate").read_bytes() == dest_before
    assert not any(call[0] == "init" and call[1] == dest for call in tool.calls)


def test_validation_failure(stores, tmp_path):
    src, _ = stores
    run = Orchestrator(FakeTerraform()).apply(tmp_path / "missing", src)
    assert run.failed
    assert run.failed_phase is Phase.VALIDATING
    assert isinstance(run.error, ValidationError)
    assert not run.backups_taken


def test_purge_operation(stores):
    src, dest = stores
    migrate(stores, SCENARIO_BUCKET)
    tool = FakeTerraform()
    run = Orchestrator(tool).purge(dest, src)
    assert run.status == "succeeded"
    assert sorted(p.name for p in run.removed_files) == [
        "terraformig.tfstate.backup",
        "terraformig.tfstate.backup",
    ]
    assert tool.calls == []
    again = Orchestrator(tool).purge(dest, src)
    assert again.status == "succeeded"
    assert again.removed_files == []


def test_rollback_restores_both_stores(stores):
    src, dest = stores
    migrate(stores, SCENARIO_BUCKET)
    run = Orchestrator(FakeTerraform()).rollback(dest, src)
    assert run.status == "succeeded"
    assert "aws_s3_bucket.logs" in state_addresses(src / "terraform.tfstate")
    assert state_addresses(dest / "terraform.tfstate") == ["aws_iam_role.deployer"]
    assert (src / "terraformig.tfstate.backup").exists()
    assert (dest / "terraformig.tfstate.backup").exists()


def test_rollback_without_backups_modifies_nothing(stores):
    src, dest = stores
    src_before = (src / "terraform.tfstate").read_bytes()
    dest_before = (dest / "terraform.tfstate").read_bytes()
    run = Orchestrator(FakeTerraform()).rollback(dest, src)
    assert run.failed
    assert run.exit_code == 1
    assert isinstance(run.error, NoBackupFound)
    assert run.error.stores == [src, dest]
    assert (src / "terraform.tfstate").read_bytes() == src_before
    assert (dest / "terraform.tfstate").read_bytes() == dest_before


def test_rollback_with_one_backup_modifies_nothing(stores):
    src, dest = stores
    BackupStore(FakeTerraform()).create(StateStore(src))
    write_state(src / "terraform.tfstate", make_state())
    run = Orchestrator(FakeTerraform()).rollback(dest, src)
    assert run.failed
    assert run.error.stores == [dest]
    assert state_addresses(src / "terraform.tfstate") == []


def test_rollback_with_unreadable_backup_modifies_nothing(stores):
    src, dest = stores
    migrate(stores, SCENARIO_BUCKET)
    (dest / "terraformig.tfstate.backup").write_bytes(b"\xff\xfe\x00")
    src_before = (src / "terraform.tfstate").read_bytes()
    dest_before = (dest / "terraform.tfstate").read_bytes()
    run = Orchestrator(FakeTerraform()).rollback(dest, src)
    assert run.failed
    assert run.failed_phase is Phase.ROLLING_BACK
    assert isinstance(run.error, BackupUnreadable)
    assert run.error.store == dest
    assert (src / "terraform.tfstate").read_bytes() == src_before
    assert (dest / "terraform.tfstate").read_bytes() == dest_before


def test_summary_mentions_moves(stores):
    run, _ = migrate(stores, SCENARIO_BUCKET)
    summary = run.summary()
    assert "aws_s3_bucket.logs" in summary
    assert "succeeded" in summary


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@pytest.fixture
def runner(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda debug: None)
    return CliRunner()


def use_tool(monkeypatch, tool):
    monkeypatch.setattr(cli, "TerraformCLI", lambda binary: tool)


def test_split_paths():
    assert cli.split_paths(("a", "b")) == ("a", "b")
    assert cli.split_paths(("b",)) == (None, "b")
    assert cli.split_paths(()) == (None, None)


def test_cli_version(runner):
    result = runner.invoke(cli.main, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_module_entry_point_runs_cli(monkeypatch, capsys):
    monkeypatch.setattr("sys.argv", ["terraformig", "--version"])
    with pytest.raises(SystemExit) as exc:
        runpy.run_module("terraformig", run_name="__main__")
    assert exc.value.code == 0
    assert "0.1.0" in capsys.readouterr().out


def test_cli_help_lists_commands(runner):
    result = runner.invoke(cli.main, ["--help"])
    assert result.exit_code == 0
    for command in ("apply", "plan", "purge", "rollback"):
        assert command in result.output


def test_cli_apply(runner, monkeypatch, stores):
    src, dest = stores
    use_tool(monkeypatch, FakeTerraform(plans={src: SCENARIO_BUCKET}))
    result = runner.invoke(cli.main, ["apply", str(src), str(dest)])
    assert result.exit_code == 0, result.output
    assert "aws_s3_bucket.logs" in result.output
    assert "aws_s3_bucket.logs" in state_addresses(dest / "terraform.tfstate")


def test_cli_plan_single_path_uses_cwd_as_source(runner, monkeypatch, stores):
    src, dest = stores
    monkeypatch.chdir(src)
    use_tool(monkeypatch, FakeTerraform(plans={src: SCENARIO_BUCKET}))
    result = runner.invoke(cli.main, ["plan", str(dest)])
    assert result.exit_code == 0, result.output
    assert "would move" in result.output


def test_cli_rollback_without_backups_exits_non_zero(runner, monkeypatch, stores):
    src, dest = stores
    use_tool(monkeypatch, FakeTerraform())
    result = runner.invoke(cli.main, ["rollback", str(src), str(dest)])
    assert result.exit_code == 1
    assert "No terraformig backup found" in result.output
    assert "--debug" in result.output


def test_cli_failure_after_backup_suggests_rollback(runner, monkeypatch, stores):
    src, dest = stores
    plan = [
        ("module.network.aws_vpc.this", ["delete"]),
        ("aws_s3_bucket.logs", ["delete"]),
        ("module.network.aws_subnet.a", ["delete"]),
    ]
    use_tool(monkeypatch, FakeTerraform(plans={src: plan}))
    result = runner.invoke(cli.main, ["apply", str(src), str(dest)])
    assert result.exit_code == 1
    assert "terraformig rollback" in result.output


def test_cli_prompts_for_destination(runner, monkeypatch, stores):
    src, dest = stores
    monkeypatch.chdir(src)
    use_tool(monkeypatch, FakeTerraform(plans={src: SCENARIO_BUCKET}))
    result = runner.invoke(cli.main, ["plan"], input=f"y\n{dest}\n")
    assert result.exit_code == 0, result.output
    assert "aws_s3_bucket.logs" in result.output


def test_cli_prompt_can_be_canceled(runner, monkeypatch, stores):
    use_tool(monkeypatch, FakeTerraform())
    result = runner.invoke(cli.main, ["apply"], input="n\n")
    assert result.exit_code == 0
    assert "Canceled" in result.output


def test_cli_too_many_paths(runner):
    result = runner.invoke(cli.main, ["apply", "a", "b", "c"])
    assert result.exit_code != 0
