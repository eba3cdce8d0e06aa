#!/usr/bin/env python3
"""
Smoke test against a running server.

    python scripts/verify_workflow.py <catalog_product_id> <locale_id> [<locale_id> ...]

Starts a locale financials workflow and polls it until the row is closed.
"""
import asyncio
import os
import sys

import httpx

API_URL = os.getenv("API_URL", "http://localhost:8000")

async def wait_for_api(client: httpx.AsyncClient) -> bool:
    print("Waiting for API to be ready...")
    for _ in range(30):
        try:
            resp = await client.get("/health")
            if resp.status_code == 200:
                print("API is ready!")
                return True
        except httpx.HTTPError:
            pass
        await asyncio.sleep(1)
    print("API failed to become ready.")
    return False

async def verify(catalog_product_id: str, locale_ids: list[str]) -> bool:
    async with httpx.AsyncClient(base_url=API_URL, timeout=30.0) as client:
        if not await wait_for_api(client):
            return False

        print(f"Starting locale financials for {len(locale_ids)} locales...")
        resp = await client.post(
            f"/api/v1/workflows/catalog-products/{catalog_product_id}/locale-financials",
            json={"locale_ids": locale_ids, "initiated_by": "verify_workflow"},
        )
        if resp.status_code != 202:
            print(f"Failed to start workflow: {resp.status_code} {resp.text}")
            return False

        handle = resp.json()
        workflow_job_id = handle["workflow_job_id"]
        print(f"Workflow {workflow_job_id} accepted, {len(handle['job_ids'])} jobs, ETA {handle['estimated_completion']}")

        for _ in range(60):
            workflow = (await client.get(f"/api/v1/workflows/{workflow_job_id}")).json()
            print(
                f"  {workflow['status']}: {workflow['completed_items']} done, "
                f"{workflow['failed_items']} failed of {workflow['total_items']}"
            )
            if workflow["completed_at"]:
                break
            await asyncio.sleep(1)
        else:
            print("Workflow did not finish in time.")
            return False

        progress = (await client.get(f"/api/v1/workflows/catalog-products/{catalog_product_id}/progress")).json()
        print(f"Catalog product progress: {progress['overall_progress_percent']}%")

        for job_id in handle["job_ids"]:
            job = (await client.get(f"/api/v1/jobs/{job_id}")).json()
            print(f"  job {job_id}: {job['status']} {job.get('error_message') or ''}")

        if workflow["status"] != "completed":
            print("FAILURE: workflow finished with failed items")
            return False

        print("SUCCESS: workflow completed")
        return True

if __name__ == "__main__":
    if len(sys.argv) < 3:
        print(__doc__)
        sys.exit(2)
    ok = asyncio.run(verify(sys.argv[1], sys.argv[2:]))
    sys.exit(0 if ok else 1)
