import asyncio

from analysis_server import AnalysisServer
from document_analysis_client.document_analysis_client import DocumentAnalysisClient
from document_analysis_client.errors import DocumentAnalysisError
from document_analysis_client.job_status_poller import JobStatusPoller


def state_changed(state):
    if state.error:
        print(f"Error: {state.error}")
    elif state.status is not None:
        suffix = " (checking every 3 seconds)" if state.polling else ""
        print(f"Job {state.job_id} is {state.status.value}{suffix}")


async def main():
    PORT = 3001
    server = AnalysisServer(completion_time=8.0, failure_rate=0.1)
    await server.start(port=PORT)
    print(f"Server started on http://localhost:{PORT}")

    async with DocumentAnalysisClient(f"http://localhost:{PORT}/api") as client:
        async with JobStatusPoller(client, on_state_change=state_changed) as poller:
            try:
                upload = await client.submit_document(
                    "notes.txt", b"Async polling keeps the client responsive."
                )
                print(f"Job ID: {upload.job_id}")

                await poller.check(upload.job_id)
                final_state = await poller.wait()
            except DocumentAnalysisError as e:
                print(f"Error occurred: {e}")
            else:
                if final_state.result is not None:
                    print(f"Summary: {final_state.result.summary}")
                    print(f"Topics: {', '.join(final_state.result.topics)}")
                    print(f"Sentiment: {final_state.result.sentiment}")

    await server.stop()


if __name__ == "__main__":
    asyncio.run(main())
