from capacity_gate.models.scaling import CostSavings

# Fargate pricing, approximate for us-east-1: 0.25 vCPU + 0.5 GB memory
DEFAULT_COST_PER_TASK_HOUR = 0.04048


def estimate_cost_savings(task_count: int, cost_per_task_hour: float = DEFAULT_COST_PER_TASK_HOUR) -> CostSavings:
    """Savings from stopping ``task_count`` tasks (30-day month)"""
    hourly = round(max(0, task_count) * cost_per_task_hour, 4)
    daily = round(hourly * 24, 2)
    return CostSavings(hourly=hourly, daily=daily, monthly=round(daily * 30, 2))
