"""
Release steps — render the stack locally and put it on the host.

    render_templates   action   write files under <build_dir>/<name>/
    create_storage     action   mkdir -p the remote storage tree
    deploy_files       action   upload every rendered file
    verify_files_deployed  validation (test only)
"""

from __future__ import annotations

import logging
import shlex

from tracker_deployer.core.engine.step import Step, StepContext
from tracker_deployer.core.models.outcome import ErrorKind, StepOutcome
from tracker_deployer.core.rendering import REMOTE_DEPLOY_DIR, render_release, storage_dirs, write_files

logger = logging.getLogger(__name__)


class RenderTemplates(Step):
    step_id = "render_templates"
    description = "Render tracker, compose and proxy configuration"
    mutates = True
    requires = ("build_dir",)

    def execute(self, context: StepContext) -> StepOutcome:
        assert context.build_dir is not None
        files = render_release(context.environment.config)
        try:
            written = write_files(files, context.build_dir)
        except OSError as e:
            return self.fail(
                ErrorKind.PERSISTENCE_FAILED,
                f"Cannot write rendered files to {context.build_dir}: {e}",
                "Check that the build directory is writable.",
            )
        context.facts["rendered_files"] = [f.path for f in files]
        return self.ok(f"{len(written)} files rendered", files=[f.path for f in files])


class CreateStorage(Step):
    step_id = "create_storage"
    description = "Create remote storage directories"
    mutates = True
    requires = ("remote",)

    def execute(self, context: StepContext) -> StepOutcome:
        remote = context.remote
        assert remote is not None
        dirs = [f"{REMOTE_DEPLOY_DIR}/{d}" for d in storage_dirs(context.environment.config)]
        quoted = " ".join(shlex.quote(d) for d in dirs)
        command = (
            f"sudo mkdir -p {quoted}"
            f" && sudo chown -R \"$(id -u):$(id -g)\" {shlex.quote(REMOTE_DEPLOY_DIR)}"
        )
        result = remote.run(command, timeout=context.timeouts.command)
        if not result.ok:
            return self.command_failed(
                result,
                "Creating storage directories",
                f"Check that the SSH user may use sudo and that {REMOTE_DEPLOY_DIR} is writable.",
            )
        return self.ok(f"{len(dirs)} directories ready under {REMOTE_DEPLOY_DIR}")


class DeployFiles(Step):
    step_id = "deploy_files"
    description = "Upload rendered files to the host"
    mutates = True
    requires = ("remote", "build_dir")

    def execute(self, context: StepContext) -> StepOutcome:
        remote = context.remote
        assert remote is not None and context.build_dir is not None
        files = render_release(context.environment.config)

        missing = [f.path for f in files if not (context.build_dir / f.path).is_file()]
        if missing:
            return self.fail(
                ErrorKind.PRECONDITION_NOT_MET,
                f"Rendered files missing from {context.build_dir}: {', '.join(missing)}",
                "Run 'release' again; rendering happens before upload.",
            )

        for gf in files:
            result = remote.upload(
                context.build_dir / gf.path,
                gf.remote_path(),
                timeout=context.timeouts.upload,
            )
            if not result.ok:
                return self.command_failed(
                    result,
                    f"Uploading {gf.path}",
                    "Check free disk space on the host and SSH connectivity, then run 'release' again.",
                )
        return self.ok(f"{len(files)} files uploaded to {REMOTE_DEPLOY_DIR}")


class VerifyFilesDeployed(Step):
    step_id = "verify_files_deployed"
    description = "Verify release files are present on the host"
    requires = ("remote",)

    def execute(self, context: StepContext) -> StepOutcome:
        remote = context.remote
        assert remote is not None
        paths = [gf.remote_path() for gf in render_release(context.environment.config)]
        command = (
            "for f in " + " ".join(shlex.quote(p) for p in paths)
            + '; do [ -f "$f" ] || echo "$f"; done'
        )
        result = remote.run(command, timeout=context.timeouts.command)
        if not result.ok:
            return self.command_failed(
                result,
                "Checking deployed files",
                "Check SSH connectivity to the host and retry.",
            )
        missing = [line for line in result.stdout.splitlines() if line.strip()]
        if missing:
            return self.fail(
                ErrorKind.PRECONDITION_NOT_MET,
                f"Missing on host: {', '.join(missing)}",
                "The host does not match the 'released' stage; redeploy the files.",
            )
        return self.ok(f"{len(paths)} files present")
