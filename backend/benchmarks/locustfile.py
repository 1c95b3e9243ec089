from locust import HttpUser, task, between

class ClinicStaffUser(HttpUser):
    wait_time = between(1, 3)

    @task(3)
    def list_open_alerts(self):
        self.client.get("/api/takehome/alerts", params={"status": "open"})

    @task(2)
    def list_active_holds(self):
        self.client.get("/api/takehome/holds")

    @task(1)
    def reporting_dashboard(self):
        self.client.get("/api/dea/sync")

    @task(1)
    def scan_unknown_token(self):
        self.client.post(
            "/api/takehome/verify-scan",
            json={"qr_code_data": "bG9hZC10ZXN0"},
            name="/api/takehome/verify-scan [unknown]",
        )
