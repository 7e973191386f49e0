"""Built-in command templates for the four deployment stages.

Each script ends by echoing a stage-specific marker; the stage's success
predicate requires it in the captured output.
"""

from .engine import CommandTemplate

# ============================================================================
# Success markers
# ============================================================================

DEPENDENCY_CHECK_MARKER = "FLEET_DEPLOYER_RUNTIME_READY"
ARTIFACT_PULL_MARKER = "FLEET_DEPLOYER_IMAGE_PULLED"
DEPLOY_SWAP_MARKER = "FLEET_DEPLOYER_CONTAINER_STARTED"
HEALTH_CHECK_MARKER = "FLEET_DEPLOYER_HEALTHY"

# ============================================================================
# DependencyCheck: make sure the container runtime exists and is running
# ============================================================================

DEPENDENCY_CHECK = CommandTemplate(
    name="dependency_check",
    body="""\
set -eu
if ! command -v docker >/dev/null 2>&1; then
    echo "docker not found, installing"
    if command -v apt-get >/dev/null 2>&1; then
        sudo apt-get update -y
        sudo apt-get install -y docker.io
    elif command -v dnf >/dev/null 2>&1; then
        sudo dnf install -y docker
    elif command -v yum >/dev/null 2>&1; then
        sudo yum install -y docker
    else
        echo "no supported package manager" >&2
        exit 1
    fi
fi
if command -v systemctl >/dev/null 2>&1; then
    sudo systemctl start docker || true
fi
docker info >/dev/null
mkdir -p {{ deploy_path }}
echo run={{ run_id }}
echo FLEET_DEPLOYER_RUNTIME_READY
""",
)

# ============================================================================
# ArtifactPull: fetch the named image version onto the target
# ============================================================================

ARTIFACT_PULL = CommandTemplate(
    name="artifact_pull",
    body="""\
set -eu
docker --config {{ credentials_ref }} pull {{ image_ref }}
docker image inspect {{ image_ref }} >/dev/null
echo FLEET_DEPLOYER_IMAGE_PULLED
""",
)

# ============================================================================
# DeploySwap: replace the running container with one from the pulled image
# ============================================================================

DEPLOY_SWAP = CommandTemplate(
    name="deploy_swap",
    body="""\
set -eu
cd {{ deploy_path }}
if docker container inspect {{ container_name }} >/dev/null 2>&1; then
    docker stop {{ container_name }} || true
    docker rm {{ container_name }}
fi
docker run -d --name {{ container_name }} --restart unless-stopped \\
    -p {{ host_port }}:{{ container_port }} {{ image_ref }}
printf '%s\\n' {{ image_ref }} > {{ deploy_path }}/CURRENT_IMAGE
echo FLEET_DEPLOYER_CONTAINER_STARTED
""",
)

# ============================================================================
# HealthCheck: bounded requests within an overall window; giving up exits 124
# ============================================================================

HEALTH_CHECK_TIMEOUT_EXIT = 124

HEALTH_CHECK = CommandTemplate(
    name="health_check",
    body="""\
set -u
url="http://127.0.0.1:"{{ host_port }}{{ health_path }}
deadline=$(($(date +%s) + {{ health_window }}))
check_once() {
    if command -v curl >/dev/null 2>&1; then
        curl -fsS --max-time {{ health_request_timeout }} -o /dev/null "$url"
    elif command -v wget >/dev/null 2>&1; then
        wget -q -T {{ health_request_timeout }} -t 1 -O /dev/null "$url"
    else
        echo "neither curl nor wget is installed" >&2
        exit 127
    fi
}
attempt=1
while :; do
    if check_once; then
        echo "attempt $attempt ok"
        echo FLEET_DEPLOYER_HEALTHY
        exit 0
    fi
    echo "attempt $attempt failed"
    if [ "$attempt" -ge {{ health_attempts }} ] || [ "$(date +%s)" -ge "$deadline" ]; then
        break
    fi
    attempt=$((attempt + 1))
    sleep {{ health_interval }}
done
echo not healthy within {{ health_window }}s window
docker logs --tail 50 {{ container_name }} 2>&1 || true
exit 124
""",
)

BUILTIN_TEMPLATES = {
    t.name: t for t in (DEPENDENCY_CHECK, ARTIFACT_PULL, DEPLOY_SWAP, HEALTH_CHECK)
}
