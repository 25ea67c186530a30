"""
assignment-operator materializes workload assignments into a GitOps repository.

A `Workload` names a template tree and the rules selecting the clusters it may
run on. Each `WorkloadAssignment` binds a workload to one cluster. The
operator watches assignments and, for each one, renders the workload template
with the layered values of the assignment into `<cluster>/<assignment>` of the
GitOps repository, regenerates the `kustomization.yaml` of the cluster
directory, then commits and pushes. Deleting an assignment removes its
directory the same way before the finalizer releases the resource.
"""

__all__ = [
    "config",
    "controller",
    "exceptions",
    "gitops",
    "linker",
    "manifest",
    "render",
    "selector",
    "store",
    "values",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
